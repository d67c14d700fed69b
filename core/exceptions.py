"""Custom exceptions for Gridlens"""


class GridlensError(Exception):
    """Base exception for all Gridlens errors"""
    pass


class GridShapeError(GridlensError, ValueError):
    """Grid matrices are ragged or disagree in shape"""
    def __init__(self, message: str, row: int = None):
        super().__init__(message)
        self.row = row


class StageError(GridlensError):
    """Error in a specific stage"""
    def __init__(self, stage: int, message: str):
        super().__init__(f"Stage {stage}: {message}")
        self.stage = stage
        self.message = message


class SerializationError(GridlensError):
    """Unknown encoder format or representation mode"""
    def __init__(self, message: str, requested: str = None):
        super().__init__(message)
        self.requested = requested


class WorkbookLoadError(GridlensError):
    """Workbook or sheet could not be opened"""
    def __init__(self, message: str, file_path: str = None):
        super().__init__(message)
        self.file_path = file_path
