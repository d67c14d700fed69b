"""Core enumerations for Gridlens"""

from enum import Enum


class FormulaCategory(str, Enum):
    """Semantic formula categories, in tie-break priority order"""
    FINANCIAL = "financial"
    STATISTICAL = "statistical"
    LOOKUP = "lookup"
    LOGICAL = "logical"
    MATHEMATICAL = "mathematical"
    TEXT = "text"
    DATE_TIME = "date-time"
    REFERENCE = "reference"
    ARRAY = "array"
    DATABASE = "database"
    ENGINEERING = "engineering"
    INFORMATION = "information"
    CUSTOM = "custom"
    UNKNOWN = "unknown"


class ComplexityBucket(str, Enum):
    """Type detector complexity buckets"""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ComplexityLevel(str, Enum):
    """Formula analyzer complexity levels"""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    VERY_COMPLEX = "very-complex"


class ValidationErrorType(str, Enum):
    """Formula error taxonomy"""
    SYNTAX = "syntax"
    REFERENCE = "reference"
    CIRCULAR = "circular"
    TYPE_MISMATCH = "type-mismatch"
    MISSING_FUNCTION = "missing-function"


class ValidationWarningType(str, Enum):
    """Formula warning taxonomy"""
    PERFORMANCE = "performance"
    COMPATIBILITY = "compatibility"
    BEST_PRACTICE = "best-practice"
    VOLATILE = "volatile"


class RegionType(str, Enum):
    """Semantic region roles"""
    HEADER = "header"
    DATA = "data"
    TOTAL = "total"
    INPUT = "input"
    CALCULATION = "calculation"
    LABEL = "label"
    EMPTY = "empty"


class FormulaPatternType(str, Enum):
    """Formula pattern kinds"""
    AGGREGATION = "aggregation"
    LOOKUP = "lookup"
    CONDITIONAL = "conditional"
    SEQUENTIAL = "sequential"
    REPEATED = "repeated"


class DataPatternType(str, Enum):
    """Numeric sequence pattern kinds"""
    SERIES = "series"
    GROWTH = "growth"
    PERIODIC = "periodic"


class Axis(str, Enum):
    ROW = "row"
    COLUMN = "column"


class RelationshipType(str, Enum):
    """Cell-to-cell relationship kinds"""
    DEPENDS_ON = "depends-on"
    AGGREGATES = "aggregates"
    VALIDATES = "validates"
    INFLUENCES = "influences"


class MetricImportance(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CellType(str, Enum):
    """Cell content classification used in the cell map"""
    FORMULA = "formula"
    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"
    EMPTY = "empty"


class SpreadsheetPurpose(str, Enum):
    FINANCIAL_MODEL = "financial_model"
    CALCULATION_WORKSHEET = "calculation_worksheet"
    REFERENCE_TABLE = "reference_table"
    TIME_SERIES_ANALYSIS = "time_series_analysis"
    DATA_TABLE = "data_table"
    GENERAL_SPREADSHEET = "general_spreadsheet"


class QueryIntent(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    VALIDATE = "validate"
    EXPLAIN = "explain"
    ANALYZE = "analyze"


class DataScope(str, Enum):
    CELL = "cell"
    REGION = "region"
    SHEET = "sheet"
    WORKBOOK = "workbook"


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class RepresentationMode(str, Enum):
    """Representation modes offered to the language model"""
    SPATIAL = "spatial"
    STRUCTURED = "structured"
    SEMANTIC = "semantic"
    DIFFERENTIAL = "differential"
    COMPACT = "compact"
    DETAILED = "detailed"


class CompressionLevel(str, Enum):
    MINIMAL = "minimal"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class TargetAudience(str, Enum):
    LLM = "llm"
    HUMAN = "human"


class GridFormat(str, Enum):
    """Text encodings produced by the grid encoders"""
    TABLE = "table"
    MARKDOWN = "markdown"
    SPARSE = "sparse"
    COMPRESSED = "compressed"
    HYBRID = "hybrid"
    COMPACT = "compact"
    SUMMARY = "summary"


class FillDirection(str, Enum):
    DOWN = "down"
    RIGHT = "right"
    BOTH = "both"
    SINGLE = "single"


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    FORMULA_CHANGED = "formula-changed"
    VALUE_CHANGED = "value-changed"
