"""Recursive-descent parser for spreadsheet formula text."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from openpyxl.formula.tokenizer import Token, Tokenizer, TokenizerError

from core.models import (
    ConstantNode,
    ErrorNode,
    FunctionNode,
    OperatorNode,
    ParsedFormula,
    ReferenceNode,
)

SHEET = r"(?:'(?:[^']|'')+'|\[[^\]]+\][^!'\s(),]*|[A-Za-z_][A-Za-z0-9_.]*)"
CELL = r"\$?[A-Za-z]{1,3}\$?\d+"

logger = logging.getLogger(__name__)


def children(node: ParsedFormula) -> List[ParsedFormula]:
    if isinstance(node, FunctionNode):
        return node.args
    if isinstance(node, OperatorNode):
        return node.operands
    return []


def format_number(value: float) -> str:
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


class FormulaParser:
    """Parse one formula string into a ParsedFormula tree; never raises."""

    NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?(?P<percent>%?)$")
    STRING_PATTERN = re.compile(r'^"(?:[^"]|"")*"$')
    ERROR_LITERAL_PATTERN = re.compile(
        r"^#(?:NULL!|DIV/0!|VALUE!|REF!|NAME\?|NUM!|N/A|GETTING_DATA|SPILL!|CALC!)$",
        re.IGNORECASE,
    )
    SHEET_PREFIX_PATTERN = re.compile(rf"^(?P<sheet>{SHEET})!(?P<body>.+)$")
    CELL_PATTERN = re.compile(rf"^{CELL}$")
    CELL_RANGE_PATTERN = re.compile(rf"^{CELL}:{CELL}$")
    COLUMN_RANGE_PATTERN = re.compile(r"^\$?[A-Za-z]{1,3}:\$?[A-Za-z]{1,3}$")
    ROW_RANGE_PATTERN = re.compile(r"^\$?\d+:\$?\d+$")
    FUNCTION_START_PATTERN = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_.]*)\s*\(")
    FUNCTION_PATTERN = re.compile(r"([A-Za-z_][A-Za-z0-9_.]*)\s*\(")
    AXIS_PATTERN = re.compile(r"^(\$?)([A-Za-z]*)(\$?)(\d*)$")

    REFERENCE_TOKEN_PATTERN = re.compile(
        rf"^(?:{SHEET}!)?"
        rf"(?:{CELL}(?::{CELL})?|\$?[A-Za-z]{{1,3}}:\$?[A-Za-z]{{1,3}}|\$?\d+:\$?\d+)$"
    )

    # Lowest precedence first; every tier is left-associative.
    OPERATOR_TIERS: List[Tuple[str, ...]] = [
        ("=", "<>", "<=", ">=", "<", ">"),
        ("&",),
        ("+", "-"),
        ("*", "/"),
        ("^",),
    ]
    TWO_CHAR_OPERATORS = ("<>", "<=", ">=")
    OPERATOR_CHARS = "=<>&+-*/^"
    OPERATOR_WORDS = {
        "+": "plus",
        "-": "minus",
        "*": "times",
        "/": "divided by",
        "^": "to the power of",
        "&": "joined with",
        "=": "equals",
        "<>": "is not equal to",
        ">": "is greater than",
        "<": "is less than",
        ">=": "is at least",
        "<=": "is at most",
    }

    def parse(self, formula: Optional[str]) -> ParsedFormula:
        text = (formula or "").strip()
        if text.startswith("="):
            text = text[1:]
        try:
            return self._parse_expression(text)
        except RecursionError:
            return ErrorNode(message="Formula is nested too deeply to parse", text=text)

    def extract_references(self, formula: Optional[str]) -> List[str]:
        """Unique reference operands in order of appearance; ranges stay whole"""
        text = (formula or "").strip()
        if not text:
            return []
        if not text.startswith("="):
            text = "=" + text
        try:
            tokens = Tokenizer(text).items
        except (TokenizerError, IndexError):
            logger.debug("Could not tokenize %r; no references extracted", text)
            return []

        references: List[str] = []
        for token in tokens:
            if token.type != Token.OPERAND or token.subtype != Token.RANGE:
                continue
            if self.REFERENCE_TOKEN_PATTERN.match(token.value) and token.value not in references:
                references.append(token.value)
        return references

    def extract_functions(self, formula: Optional[str]) -> List[str]:
        text = self._mask_strings(formula or "")
        seen: List[str] = []
        for match in self.FUNCTION_PATTERN.finditer(text):
            name = self._normalize_function_name(match.group(1))
            if name not in seen:
                seen.append(name)
        return seen

    def to_formula(self, node: ParsedFormula) -> str:
        """Serialize a tree back to formula text (without the leading `=`)"""
        if isinstance(node, FunctionNode):
            return f"{node.name}({','.join(self.to_formula(arg) for arg in node.args)})"
        if isinstance(node, OperatorNode):
            if len(node.operands) == 1:
                inner = self.to_formula(node.operands[0])
                return f"{inner}%" if node.operator == "%" else f"{node.operator}{inner}"
            parts = [self._wrap_operand(op, node) for op in node.operands]
            return node.operator.join(parts)
        if isinstance(node, ReferenceNode):
            return f"{self._quote_sheet(node.sheet)}!{node.reference}" if node.sheet else node.reference
        if isinstance(node, ConstantNode):
            if node.value_type == "boolean":
                return "TRUE" if node.value else "FALSE"
            if node.value_type == "number":
                return format_number(node.value)
            if node.value.startswith("{") or node.value.startswith("#"):
                return node.value
            return '"' + node.value.replace('"', '""') + '"'
        return node.text

    def describe(self, node: ParsedFormula) -> str:
        """One-line English rendering, e.g. `SUM of A1:A3` or `A1 plus B1`"""
        if isinstance(node, FunctionNode):
            if not node.args:
                return node.name
            return f"{node.name} of {', '.join(self.describe(arg) for arg in node.args)}"
        if isinstance(node, OperatorNode):
            if len(node.operands) == 1:
                inner = self.describe(node.operands[0])
                return f"{inner} percent" if node.operator == "%" else f"negative {inner}"
            word = self.OPERATOR_WORDS.get(node.operator, node.operator)
            return f" {word} ".join(self._describe_operand(op) for op in node.operands)
        if isinstance(node, ErrorNode):
            return "invalid expression"
        return self.to_formula(node)

    # ─────────────────────────────────────────────────────────────
    # Recursive descent
    # ─────────────────────────────────────────────────────────────

    def _parse_expression(self, text: str) -> ParsedFormula:
        text = text.strip()
        if not text:
            return ErrorNode(message="Empty expression", text=text)

        while text.startswith("(") and self._matching_close(text, 0) == len(text) - 1:
            text = text[1:-1].strip()
            if not text:
                return ErrorNode(message="Empty parentheses", text="()")

        constant = self._parse_constant(text)
        if constant is not None:
            return constant

        reference = self._parse_reference(text)
        if reference is not None:
            return reference

        function = self._parse_function(text)
        if function is not None:
            return function

        split = self._find_split(text)
        if split is not None:
            idx, operator = split
            left = text[:idx].strip()
            right = text[idx + len(operator):].strip()
            if not left or not right:
                return ErrorNode(message=f"Missing operand for '{operator}'", text=text)
            return OperatorNode(
                operator=operator,
                operands=[self._parse_expression(left), self._parse_expression(right)],
            )

        if text[0] in "+-":
            operand = self._parse_expression(text[1:])
            if text[0] == "+":
                return operand
            return OperatorNode(operator="-", operands=[operand])

        if text.endswith("%"):
            return OperatorNode(operator="%", operands=[self._parse_expression(text[:-1])])

        return ErrorNode(message=f"Unrecognized expression: {text}", text=text)

    def _parse_constant(self, text: str) -> Optional[ConstantNode]:
        match = self.NUMBER_PATTERN.match(text)
        if match:
            raw = text[:-1] if match.group("percent") else text
            try:
                value = float(raw)
            except ValueError:
                return None
            if match.group("percent"):
                value = value / 100
            return ConstantNode(value=value, value_type="number")

        if self.STRING_PATTERN.match(text):
            return ConstantNode(value=text[1:-1].replace('""', '"'), value_type="text")

        upper = text.upper()
        if upper in ("TRUE", "FALSE"):
            return ConstantNode(value=upper == "TRUE", value_type="boolean")

        if self.ERROR_LITERAL_PATTERN.match(text):
            return ConstantNode(value=upper, value_type="text")

        if text.startswith("{") and self._matching_close(text, 0) == len(text) - 1:
            # Array literals are kept verbatim rather than parsed.
            return ConstantNode(value=text, value_type="text")

        return None

    def _parse_reference(self, text: str) -> Optional[ReferenceNode]:
        sheet = None
        body = text
        match = self.SHEET_PREFIX_PATTERN.match(text)
        if match:
            sheet = match.group("sheet")
            body = match.group("body")
            if sheet.startswith("'") and sheet.endswith("'"):
                sheet = sheet[1:-1].replace("''", "'")

        if self.CELL_PATTERN.match(body):
            col_abs, row_abs = self._axis_flags(body)
            return ReferenceNode(
                reference=body,
                sheet=sheet,
                absolute_column=col_abs,
                absolute_row=row_abs,
            )

        if (
            self.CELL_RANGE_PATTERN.match(body)
            or self.COLUMN_RANGE_PATTERN.match(body)
            or self.ROW_RANGE_PATTERN.match(body)
        ):
            start, end = body.split(":", 1)
            col_abs, row_abs = self._axis_flags(start)
            end_col_abs, end_row_abs = self._axis_flags(end)
            return ReferenceNode(
                reference=body,
                sheet=sheet,
                is_range=True,
                absolute_column=col_abs,
                absolute_row=row_abs,
                end_absolute_column=end_col_abs,
                end_absolute_row=end_row_abs,
            )

        return None

    def _parse_function(self, text: str) -> Optional[FunctionNode]:
        match = self.FUNCTION_START_PATTERN.match(text)
        if not match:
            return None
        open_idx = match.end() - 1
        if self._matching_close(text, open_idx) != len(text) - 1:
            return None

        inner = text[open_idx + 1:-1]
        args: List[ParsedFormula] = []
        if inner.strip():
            for part in self._split_arguments(inner):
                if part.strip():
                    args.append(self._parse_expression(part))
                else:
                    args.append(ConstantNode(value="", value_type="text"))
        return FunctionNode(name=self._normalize_function_name(match.group("name")), args=args)

    def _find_split(self, text: str) -> Optional[Tuple[int, str]]:
        found: List[Tuple[int, str]] = []
        depth = 0
        quote = None
        idx = 0
        prev_significant = None
        while idx < len(text):
            ch = text[idx]
            if quote:
                if ch == quote:
                    quote = None
                prev_significant = ch
                idx += 1
                continue
            if ch in "\"'":
                quote = ch
            elif ch in "({":
                depth += 1
            elif ch in ")}":
                depth -= 1
            elif depth == 0 and ch in self.OPERATOR_CHARS:
                two = text[idx:idx + 2]
                if two in self.TWO_CHAR_OPERATORS:
                    found.append((idx, two))
                    prev_significant = two[-1]
                    idx += 2
                    continue
                if ch in "+-" and self._is_unary(text, idx, prev_significant):
                    prev_significant = ch
                    idx += 1
                    continue
                found.append((idx, ch))
            if not ch.isspace():
                prev_significant = ch
            idx += 1

        for tier in self.OPERATOR_TIERS:
            candidates = [item for item in found if item[1] in tier]
            if candidates:
                return candidates[-1]
        return None

    def _is_unary(self, text: str, idx: int, prev_significant: Optional[str]) -> bool:
        if prev_significant is None or prev_significant in self.OPERATOR_CHARS + "(,:":
            return True
        # exponent sign, e.g. 1.5E-3
        head = text[:idx]
        return bool(re.search(r"(?:^|[^A-Za-z0-9_$.])\d+(?:\.\d*)?[eE]$", head))

    # ─────────────────────────────────────────────────────────────
    # Scanning helpers
    # ─────────────────────────────────────────────────────────────

    def _matching_close(self, text: str, open_idx: int) -> int:
        depth = 0
        quote = None
        for idx in range(open_idx, len(text)):
            ch = text[idx]
            if quote:
                if ch == quote:
                    quote = None
                continue
            if ch in "\"'":
                quote = ch
            elif ch in "({":
                depth += 1
            elif ch in ")}":
                depth -= 1
                if depth == 0:
                    return idx
        return -1

    def _split_arguments(self, text: str) -> List[str]:
        parts: List[str] = []
        depth = 0
        quote = None
        start = 0
        for idx, ch in enumerate(text):
            if quote:
                if ch == quote:
                    quote = None
                continue
            if ch in "\"'":
                quote = ch
            elif ch in "({":
                depth += 1
            elif ch in ")}":
                depth -= 1
            elif ch == "," and depth == 0:
                parts.append(text[start:idx])
                start = idx + 1
        parts.append(text[start:])
        return parts

    def _mask_strings(self, formula: str) -> str:
        """Blank out string literal contents so their text is never scanned"""
        out = []
        in_string = False
        for ch in formula:
            if ch == '"':
                in_string = not in_string
                out.append(ch)
            else:
                out.append(" " if in_string else ch)
        return "".join(out)

    def _axis_flags(self, endpoint: str) -> Tuple[bool, bool]:
        match = self.AXIS_PATTERN.match(endpoint)
        if not match:
            return False, False
        lead, letters, mid, digits = match.groups()
        if letters:
            return bool(lead), bool(mid) and bool(digits)
        return False, bool(lead)

    def _normalize_function_name(self, name: str) -> str:
        name = name.upper()
        for prefix in ("_XLFN._XLWS.", "_XLFN.", "_XLWS."):
            if name.startswith(prefix):
                return name[len(prefix):]
        return name

    def _quote_sheet(self, sheet: str) -> str:
        if re.match(r"^[A-Za-z_][A-Za-z0-9_.]*$", sheet) or sheet.startswith("["):
            return sheet
        return "'" + sheet.replace("'", "''") + "'"

    def _wrap_operand(self, operand: ParsedFormula, parent: OperatorNode) -> str:
        text = self.to_formula(operand)
        if isinstance(operand, OperatorNode) and len(operand.operands) > 1:
            if self._tier(operand.operator) <= self._tier(parent.operator):
                return f"({text})"
        return text

    def _describe_operand(self, operand: ParsedFormula) -> str:
        text = self.describe(operand)
        if isinstance(operand, OperatorNode) and len(operand.operands) > 1:
            return f"({text})"
        return text

    def _tier(self, operator: str) -> int:
        for idx, tier in enumerate(self.OPERATOR_TIERS):
            if operator in tier:
                return idx
        return len(self.OPERATOR_TIERS)
