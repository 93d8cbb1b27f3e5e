from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


# --- Tokens ---

@dataclass
class Token:
    kind: str
    text: str


_THREE_CHAR_OPS = ("<<=", ">>=", "...")
_TWO_CHAR_OPS = ("<<", ">>", "<=", ">=", "==", "!=", "&&", "||", "->", "++", "--")


def _scan_quoted(src: str, i: int, quote: str) -> int:
    n = len(src)
    i += 1
    while i < n:
        if src[i] == '\\':
            i += 2
            continue
        if src[i] == quote:
            return i + 1
        i += 1
    return n


def tokenize(src: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(src)
    while i < n:
        ch = src[i]
        # Skip whitespace
        if ch.isspace():
            i += 1
            continue
        # String and character literals, with an optional L/u/U/u8 prefix
        prefix = 0
        for p in ("u8", "L", "u", "U"):
            if src.startswith(p, i) and i + len(p) < n and src[i + len(p)] in "\"'":
                prefix = len(p)
                break
        if ch in "\"'" or prefix:
            quote = src[i + prefix]
            end = _scan_quoted(src, i + prefix, quote)
            tokens.append(Token('string' if quote == '"' else 'char', src[i:end]))
            i = end
            continue
        # Identifiers
        if ch.isalpha() or ch == '_':
            start = i
            i += 1
            while i < n and (src[i].isalnum() or src[i] == '_'):
                i += 1
            tokens.append(Token('ident', src[start:i]))
            continue
        # Numbers, keeping suffixes and exponents in the spelling
        if ch.isdigit() or (ch == '.' and i + 1 < n and src[i + 1].isdigit()):
            start = i
            exponent = 'pP' if src[i:i + 2].lower() == '0x' else 'eE'
            i += 1
            while i < n:
                c = src[i]
                if c in '+-' and src[i - 1] in exponent:
                    i += 1
                    continue
                if c.isalnum() or c in "._'":
                    i += 1
                    continue
                break
            tokens.append(Token('number', src[start:i]))
            continue
        if src[i:i + 3] in _THREE_CHAR_OPS:
            tokens.append(Token('op', src[i:i + 3]))
            i += 3
            continue
        if src[i:i + 2] in _TWO_CHAR_OPS:
            tokens.append(Token('op', src[i:i + 2]))
            i += 2
            continue
        # Single characters
        if ch in '{}()[],=+-*/%&|^~!<>?:.;#':
            kind = 'brace' if ch in '{}' else ('paren' if ch in '()' else ('bracket' if ch in '[]' else ('comma' if ch == ',' else ('assign' if ch == '=' else 'op'))))
            tokens.append(Token(kind, ch))
            i += 1
            continue
        # Fallback: treat as op
        tokens.append(Token('op', ch))
        i += 1
    return tokens


# --- AST Nodes ---

class Expr: ...

@dataclass
class Number(Expr):
    text: str

@dataclass
class String(Expr):
    text: str

@dataclass
class Char(Expr):
    text: str

@dataclass
class Identifier(Expr):
    name: str

@dataclass
class Unary(Expr):
    op: str
    expr: Expr

@dataclass
class Cast(Expr):
    type_name: str
    expr: Expr

@dataclass
class Binary(Expr):
    left: Expr
    op: str
    right: Expr

@dataclass
class Conditional(Expr):
    condition: Expr
    if_true: Expr
    if_false: Expr

@dataclass
class Call(Expr):
    func: Identifier
    args: List[Expr]


TYPE_KEYWORDS = frozenset([
    "void", "char", "short", "int", "long", "float", "double", "signed", "unsigned",
    "_Bool", "bool", "const", "volatile",
])

# Keywords that can never appear in a constant expression.
C_KEYWORDS = TYPE_KEYWORDS | frozenset([
    "auto", "break", "case", "continue", "default", "do", "else", "enum", "extern", "for",
    "goto", "if", "inline", "register", "restrict", "return", "sizeof", "static", "struct",
    "switch", "typedef", "union", "while", "_Alignas", "_Alignof", "_Atomic", "_Generic",
    "_Noreturn", "_Static_assert", "_Thread_local", "__attribute__", "__declspec",
    "__typeof__", "typeof", "__extension__", "__inline", "__inline__",
])

PRECEDENCE = {
    '||': 1,
    '&&': 2,
    '|': 3,
    '^': 4,
    '&': 5,
    '==': 6, '!=': 6,
    '<': 7, '>': 7, '<=': 7, '>=': 7,
    '<<': 8, '>>': 8,
    '+': 9, '-': 9,
    '*': 10, '/': 10, '%': 10,
}

_UNARY_OPS = ('-', '+', '~', '!')


# --- Parser ---

class Parser:
    def __init__(self, tokens: List[Token]):
        self.toks = tokens
        self.i = 0

    def _peek(self, k: int = 0) -> Optional[Token]:
        j = self.i + k
        return self.toks[j] if 0 <= j < len(self.toks) else None

    def _eat(self, kind: Optional[str] = None, text: Optional[str] = None) -> Optional[Token]:
        t = self._peek()
        if not t:
            return None
        if kind is not None and t.kind != kind:
            return None
        if text is not None and t.text != text:
            return None
        self.i += 1
        return t

    @property
    def at_end(self) -> bool:
        return self.i >= len(self.toks)

    def parse(self) -> Optional[Expr]:
        """Parses one whole expression; None if tokens are left over."""
        expr = self._parse_expr()
        if expr is None or not self.at_end:
            return None
        return expr

    def _parse_cast_type(self) -> Optional[str]:
        # '(' already consumed. Accepts builtin type keywords or a single
        # '_t' typedef name, followed by any number of '*'.
        save = self.i
        words: List[str] = []
        while True:
            t = self._peek()
            if t is not None and t.kind == 'ident' and (t.text in TYPE_KEYWORDS or (not words and t.text.endswith('_t'))):
                words.append(t.text)
                self._eat()
                continue
            break
        stars = 0
        while self._eat('op', '*'):
            stars += 1
        if words and self._eat('paren', ')'):
            nxt = self._peek()
            starts_operand = nxt is not None and (
                nxt.kind in ('number', 'ident', 'string', 'char') or nxt.text == '(' or nxt.text in ('~', '!', '-', '+'))
            only_typedef = len(words) == 1 and words[0] not in TYPE_KEYWORDS
            # '(x_t) - 1' reads as a subtraction.
            if starts_operand and not (only_typedef and nxt.text in ('-', '+')):
                return ' '.join(words) + ('*' * stars)
        self.i = save
        return None

    def _parse_unary(self) -> Optional[Expr]:
        tok = self._peek()
        if tok is None:
            return None
        if tok.kind == 'op' and tok.text in _UNARY_OPS:
            self._eat()
            operand = self._parse_unary()
            return Unary(tok.text, operand) if operand is not None else None
        if tok.kind == 'paren' and tok.text == '(':
            self._eat('paren', '(')
            type_name = self._parse_cast_type()
            if type_name is not None:
                operand = self._parse_unary()
                return Cast(type_name, operand) if operand is not None else None
            inner = self._parse_expr()
            if inner is None or not self._eat('paren', ')'):
                return None
            return inner
        return self._parse_primary()

    def _parse_primary(self) -> Optional[Expr]:
        tok = self._peek()
        if tok is None:
            return None
        if tok.kind == 'number':
            self._eat()
            return Number(tok.text)
        if tok.kind == 'string':
            self._eat()
            text = tok.text
            # Adjacent string literals concatenate.
            while self._peek() is not None and self._peek().kind == 'string':
                text = text[:-1] + self._eat().text[1:]
            return String(text)
        if tok.kind == 'char':
            self._eat()
            return Char(tok.text)
        if tok.kind == 'ident':
            ident = self._eat('ident')
            if self._eat('paren', '('):
                args: List[Expr] = []
                if not self._eat('paren', ')'):
                    while True:
                        arg = self._parse_expr()
                        if arg is None:
                            return None
                        args.append(arg)
                        if self._eat('paren', ')'):
                            break
                        if not self._eat('comma', ','):
                            return None
                return Call(Identifier(ident.text), args)
            return Identifier(ident.text)
        return None

    # Pratt parser over the C binary operators, with ?: at the lowest level
    def _parse_expr(self, min_prec: int = 0) -> Optional[Expr]:
        left = self._parse_unary()
        if left is None:
            return None

        def get_prec(tok: Optional[Token]) -> int:
            if tok and tok.kind == 'op' and tok.text in PRECEDENCE:
                return PRECEDENCE[tok.text]
            return -1

        while True:
            op_tok = self._peek()
            prec = get_prec(op_tok)
            if prec < 0 or prec < min_prec:
                break
            self._eat()
            right = self._parse_expr(prec + 1)
            if right is None:
                return None
            left = Binary(left, op_tok.text, right)

        if min_prec == 0 and self._eat('op', '?'):
            if_true = self._parse_expr()
            if if_true is None or not self._eat('op', ':'):
                return None
            if_false = self._parse_expr()
            if if_false is None:
                return None
            left = Conditional(left, if_true, if_false)
        return left


# --- Inspection ---

def is_constant_expression(e: Expr) -> bool:
    """Whether a macro body can be a constant: no calls, no keywords, no statements."""
    if isinstance(e, (Number, String, Char)):
        return True
    if isinstance(e, Identifier):
        return e.name not in C_KEYWORDS
    if isinstance(e, Unary):
        return is_constant_expression(e.expr)
    if isinstance(e, Cast):
        return is_constant_expression(e.expr)
    if isinstance(e, Binary):
        return is_constant_expression(e.left) and is_constant_expression(e.right)
    if isinstance(e, Conditional):
        return all(is_constant_expression(x) for x in (e.condition, e.if_true, e.if_false))
    return False


def _is_float_literal(text: str) -> bool:
    lower = text.lower()
    if lower.startswith('0x'):
        return 'p' in lower
    return '.' in lower or 'e' in lower or lower.endswith('f')


def _integer_type(text: str) -> str:
    lower = text.lower()
    if lower.startswith('0x'):
        suffix = lower[2:].lstrip("0123456789abcdef'")
    else:
        suffix = lower.lstrip("0123456789'")
    unsigned = 'u' in suffix
    longs = suffix.count('l')
    name = {0: 'int', 1: 'long', 2: 'long long'}.get(longs, 'long long')
    return f"unsigned {name}" if unsigned else name


def literal_type(e: Expr) -> Optional[str]:
    """Best guess at the C type of a literal expression, when the compiler cannot say."""
    if isinstance(e, Number):
        if _is_float_literal(e.text):
            lower = e.text.lower()
            if lower.endswith('f'):
                return 'float'
            if lower.endswith('l'):
                return 'long double'
            return 'double'
        return _integer_type(e.text)
    if isinstance(e, String):
        return 'char*'
    if isinstance(e, Char):
        return 'int'
    if isinstance(e, Cast):
        return e.type_name
    if isinstance(e, Unary):
        if e.op == '!':
            return 'int'
        return literal_type(e.expr)
    if isinstance(e, Binary):
        if e.op in ('==', '!=', '<', '>', '<=', '>=', '&&', '||'):
            return 'int'
        left = literal_type(e.left)
        right = literal_type(e.right)
        if left is None or right is None:
            return None
        for wide in ('long double', 'double', 'float'):
            if wide in (left, right):
                return wide
        return left
    if isinstance(e, Conditional):
        return literal_type(e.if_true)
    return None


# --- Rendering to C ---

def render_expr(e: Expr, top: bool = True) -> str:
    if isinstance(e, (Number, String, Char)):
        return e.text
    if isinstance(e, Identifier):
        return e.name
    if isinstance(e, Unary):
        return f"{e.op}{render_expr(e.expr, top=False)}"
    if isinstance(e, Cast):
        return f"({e.type_name}){render_expr(e.expr, top=False)}"
    if isinstance(e, Binary):
        text = f"{render_expr(e.left, top=False)} {e.op} {render_expr(e.right, top=False)}"
        return text if top else f"({text})"
    if isinstance(e, Conditional):
        text = (f"{render_expr(e.condition, top=False)} ? "
                f"{render_expr(e.if_true, top=False)} : {render_expr(e.if_false, top=False)}")
        return text if top else f"({text})"
    if isinstance(e, Call):
        args = ', '.join(render_expr(a) for a in e.args)
        return f"{e.func.name}({args})"
    return "<unknown>"


def parse_macro_replacement(text: str) -> Optional[Expr]:
    toks = tokenize(text)
    p = Parser(toks)
    return p.parse()
