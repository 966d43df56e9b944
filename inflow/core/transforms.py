"""Built-in value transforms.

Each transform is total over (value, context): input it does not understand
is returned unchanged. Parameterized transforms build themselves from a spec
string through ``from_string`` (``name:param[:param]`` or ``name(arg, ...)``).
Date handling understands PHP-style format tokens (``Y-m-d H:i:s``) because
mapping files use them.
"""

import hashlib
import json
import logging
import math
import re
import unicodedata
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

OUTPUT_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d.%m.%Y",
    "%d.%m.%Y %H:%M:%S",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
]

# PHP date() tokens -> strftime/strptime directives
PHP_DATE_TOKENS = {
    "d": "%d", "D": "%a", "j": "%d", "l": "%A",
    "m": "%m", "n": "%m", "M": "%b", "F": "%B",
    "y": "%y", "Y": "%Y",
    "H": "%H", "G": "%H", "h": "%I", "g": "%I",
    "i": "%M", "s": "%S", "u": "%f", "A": "%p", "a": "%p",
    "O": "%z", "T": "%Z", "e": "%Z",
}

TRUE_STRINGS = {"true", "yes", "y", "1", "on"}
FALSE_STRINGS = {"false", "no", "n", "0", "off"}

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def warn(context: Optional[dict], message: str) -> None:
    """Record a non-fatal transform anomaly."""
    logger.warning(message)
    if context is not None and isinstance(context.get("warnings"), list):
        context["warnings"].append(message)


def is_blank(value: Any) -> bool:
    return value is None or value == ""


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> Optional[float | int]:
    """Numeric view of a value, accepting numeric strings."""
    if is_number(value):
        return value
    if isinstance(value, str):
        s = value.strip()
        if re.fullmatch(r"[+-]?\d+", s):
            return int(s)
        try:
            number = float(s)
        except ValueError:
            return None
        return None if math.isnan(number) or math.isinf(number) else number
    return None


def php_to_strftime(fmt: str) -> str:
    """Translate a PHP date() format string into a strftime directive string."""
    out = []
    escape = False
    for ch in fmt:
        if escape:
            out.append("%%" if ch == "%" else ch)
            escape = False
        elif ch == "\\":
            escape = True
        elif ch in PHP_DATE_TOKENS:
            out.append(PHP_DATE_TOKENS[ch])
        elif ch == "%":
            out.append("%%")
        else:
            out.append(ch)
    return "".join(out)


def format_php_date(dt: datetime, fmt: str) -> str:
    """Format a datetime with PHP date() tokens, including unpadded ones."""
    unpadded = {
        "j": str(dt.day),
        "n": str(dt.month),
        "G": str(dt.hour),
        "g": str(dt.hour % 12 or 12),
        "U": str(int(_as_utc(dt).timestamp())),
        "N": str(dt.isoweekday()),
        "w": str(dt.isoweekday() % 7),
        "z": str(dt.timetuple().tm_yday - 1),
        "L": "1" if (dt.year % 4 == 0 and dt.year % 100 != 0) or dt.year % 400 == 0 else "0",
        "c": dt.isoformat(),
    }
    out = []
    escape = False
    for ch in fmt:
        if escape:
            out.append(ch)
            escape = False
        elif ch == "\\":
            escape = True
        elif ch in unpadded:
            out.append(unpadded[ch])
        elif ch in PHP_DATE_TOKENS:
            out.append(dt.strftime(PHP_DATE_TOKENS[ch]))
        else:
            out.append(ch)
    return "".join(out)


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a date-like value; numbers are unix timestamps (UTC)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    number = to_number(value)
    if number is not None and not (isinstance(value, str) and re.fullmatch(r"\d{8}", value.strip())):
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None

    s = value.strip()
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        pass
    for fmt in DATE_FORMATS + ["%Y%m%d"]:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def split_arguments(text: str) -> list[str]:
    """Split a comma separated argument list, ignoring commas inside quotes."""
    args: list[str] = []
    current: list[str] = []
    quote: Optional[str] = None
    for ch in text:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == ",":
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if current or args:
        args.append("".join(current).strip())
    return args


def _is_quoted(arg: str) -> bool:
    return len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in ("'", '"')


def _call_arguments(spec: str, name: str) -> str:
    """Return the raw argument text of ``name(...)`` or ``name:...``."""
    rest = spec[len(name):].strip()
    if rest.startswith("(") and rest.endswith(")"):
        return rest[1:-1]
    if rest.startswith(":"):
        return rest[1:]
    return rest


def _param(spec: str) -> Optional[str]:
    """Everything after the first ':' of a spec, or None."""
    if ":" not in spec:
        return None
    return spec.split(":", 1)[1]


class Transform:
    """Base class for transforms; subclasses implement apply()."""

    name = ""

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        raise NotImplementedError

    def __call__(self, value: Any, context: Optional[dict] = None) -> Any:
        return self.apply(value, context)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


class FunctionTransform(Transform):
    """Adapter for simple, parameterless transforms written as functions."""

    def __init__(self, name: str, func):
        self.name = name
        self.func = func

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        return self.func(value)


# ---------------------------------------------------------------------------
# Simple transforms
# ---------------------------------------------------------------------------


def _string_only(func):
    def wrapper(value):
        return func(value) if isinstance(value, str) else value
    return wrapper


@_string_only
def _capitalize(s: str) -> str:
    s = s.lower()
    return s[:1].upper() + s[1:]


@_string_only
def _slugify(s: str) -> str:
    ascii_text = unicodedata.normalize("NFKD", s).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")


@_string_only
def _title(s: str) -> str:
    return re.sub(r"\S+", lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), s)


@_string_only
def _snake_case(s: str) -> str:
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s.strip())
    s = re.sub(r"[\s\-]+", "_", s)
    return re.sub(r"_+", "_", s).lower()


@_string_only
def _camel_case(s: str) -> str:
    words = [w for w in re.split(r"[\s_\-]+", s.strip()) if w]
    if not words:
        return ""
    head = words[0][:1].lower() + words[0][1:]
    return head + "".join(w[:1].upper() + w[1:] for w in words[1:])


@_string_only
def _strip_tags(s: str) -> str:
    return re.sub(r"<[^>]*>", "", s)


@_string_only
def _clean_whitespace(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


@_string_only
def _normalize_multiline(s: str) -> str:
    s = s.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    lines = [re.sub(r"[ \f\v]{2,}", " ", line).strip() for line in s.split("\n")]
    s = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", s).strip()


def _null_if_empty(value):
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    return value


def _numeric(func):
    def wrapper(value):
        number = to_number(value)
        return value if number is None else func(number)
    return wrapper


def _half_up(number: float | int, places: int = 0) -> Decimal:
    return Decimal(str(number)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def _timestamp(value):
    dt = parse_datetime(value)
    if dt is None:
        return value
    return int(_as_utc(dt).timestamp())


def _json_decode(value):
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


SIMPLE_TRANSFORMS = {
    "trim": _string_only(str.strip),
    "upper": _string_only(str.upper),
    "lower": _string_only(str.lower),
    "capitalize": _capitalize,
    "slugify": _slugify,
    "title": _title,
    "snake_case": _snake_case,
    "camel_case": _camel_case,
    "strip_tags": _strip_tags,
    "clean_whitespace": _clean_whitespace,
    "normalize_multiline": _normalize_multiline,
    "null_if_empty": _null_if_empty,
    "floor": _numeric(lambda n: math.floor(n)),
    "ceil": _numeric(lambda n: math.ceil(n)),
    "to_cents": _numeric(lambda n: int(_half_up(n * 100))),
    "from_cents": _numeric(lambda n: n / 100),
    "timestamp": _timestamp,
    "json_decode": _json_decode,
}


# ---------------------------------------------------------------------------
# Parameterized transforms
# ---------------------------------------------------------------------------


class CastTransform(Transform):
    name = "cast"

    def __init__(self, target_type: str):
        self.target_type = target_type.strip().lower()

    @classmethod
    def from_string(cls, spec: str) -> "CastTransform":
        param = _param(spec)
        if not param:
            raise ValueError(f"Cast transform requires a type: {spec}")
        return cls(param)

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if is_blank(value):
            return None
        t = self.target_type
        if t in ("int", "integer"):
            number = to_number(value)
            if isinstance(value, bool):
                return int(value)
            return value if number is None else int(number)
        if t in ("float", "double", "decimal"):
            number = to_number(value)
            if isinstance(value, bool):
                return float(value)
            return value if number is None else float(number)
        if t in ("string", "str"):
            return value if isinstance(value, (list, dict)) else str(value)
        if t in ("bool", "boolean"):
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in TRUE_STRINGS:
                    return True
                if lowered in FALSE_STRINGS:
                    return False
            return bool(value)
        if t in ("date", "datetime"):
            return self._cast_date(value, context)
        if t in ("json", "array"):
            return _json_decode(value)
        return value

    def _cast_date(self, value: Any, context: Optional[dict]) -> Optional[str]:
        number = to_number(value) if not isinstance(value, (datetime, date)) else None
        if number is not None and number <= 0:
            warn(context, f"cast:date rejected non-positive timestamp {value!r}")
            return None

        dt = parse_datetime(value)
        if dt is None:
            warn(context, f"cast:date could not parse {value!r}")
            return None

        text = str(value).strip()
        if re.fullmatch(r"\d{4}", text) and dt.year != int(text):
            warn(context, f"cast:date treated {value!r} as a year, not a timestamp")
            return f"{text}-01-01 00:00:00"
        return dt.strftime(OUTPUT_DATETIME_FORMAT)


class DefaultTransform(Transform):
    name = "default"

    def __init__(self, default: Any):
        self.default = default

    @classmethod
    def from_string(cls, spec: str) -> "DefaultTransform":
        return cls(_param(spec) or "")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        return self.default if is_blank(value) else value


class HashTransform(Transform):
    name = "hash"
    ALGORITHMS = ("password", "md5", "sha1", "sha256")

    def __init__(self, algorithm: str = "password"):
        algorithm = algorithm.strip().lower() or "password"
        if algorithm not in self.ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        self.algorithm = algorithm

    @classmethod
    def from_string(cls, spec: str) -> "HashTransform":
        return cls(_param(spec) or "password")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if is_blank(value):
            return None
        if self.algorithm == "password":
            return pwd_context.hash(str(value))
        return hashlib.new(self.algorithm, str(value).encode("utf-8")).hexdigest()


class TruncateTransform(Transform):
    name = "truncate"

    def __init__(self, length: int = 255, end: str = "..."):
        self.length = length
        self.end = end

    @classmethod
    def from_string(cls, spec: str) -> "TruncateTransform":
        param = _param(spec)
        if not param:
            return cls()
        length, sep, end = param.partition(":")
        return cls(int(length), end if sep else "...")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if not isinstance(value, str) or len(value) <= self.length:
            return value
        return value[:self.length] + self.end


class PrefixTransform(Transform):
    name = "prefix"

    def __init__(self, text: str):
        self.text = text

    @classmethod
    def from_string(cls, spec: str):
        return cls(_param(spec) or "")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if isinstance(value, str) or is_number(value):
            return f"{self.text}{value}"
        return value


class SuffixTransform(PrefixTransform):
    name = "suffix"

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if isinstance(value, str) or is_number(value):
            return f"{value}{self.text}"
        return value


class RoundTransform(Transform):
    name = "round"

    def __init__(self, precision: int = 0):
        self.precision = precision

    @classmethod
    def from_string(cls, spec: str) -> "RoundTransform":
        param = _param(spec)
        return cls(int(param) if param else 0)

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        number = to_number(value)
        if number is None:
            return value
        try:
            return float(_half_up(number, self.precision))
        except InvalidOperation:
            return value


class MultiplyTransform(Transform):
    name = "multiply"

    def __init__(self, factor: float):
        self.factor = factor

    @classmethod
    def from_string(cls, spec: str):
        number = to_number(_param(spec) or "")
        if number is None:
            raise ValueError(f"{cls.name} transform requires a number: {spec}")
        return cls(number)

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        number = to_number(value)
        return value if number is None else number * self.factor


class DivideTransform(MultiplyTransform):
    name = "divide"

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        number = to_number(value)
        if number is None or self.factor == 0:
            return value
        return number / self.factor


class DateFormatTransform(Transform):
    name = "date_format"

    def __init__(self, fmt: str = "Y-m-d"):
        self.fmt = fmt

    @classmethod
    def from_string(cls, spec: str):
        return cls(_param(spec) or "Y-m-d")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if is_blank(value):
            return value
        dt = parse_datetime(value)
        if dt is None:
            return value
        return format_php_date(dt, self.fmt)


class ParseDateTransform(Transform):
    name = "parse_date"

    def __init__(self, fmt: str = "d/m/Y"):
        self.fmt = fmt

    @classmethod
    def from_string(cls, spec: str):
        return cls(_param(spec) or "d/m/Y")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if not isinstance(value, str) or not value.strip():
            return value
        try:
            dt = datetime.strptime(value.strip(), php_to_strftime(self.fmt))
        except ValueError:
            return value
        return dt.strftime(OUTPUT_DATETIME_FORMAT)


class CoalesceTransform(Transform):
    name = "coalesce"

    def __init__(self, fallback: Any):
        self.fallback = fallback

    @classmethod
    def from_string(cls, spec: str):
        return cls(_param(spec) or "")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return self.fallback
        return value


class SplitTransform(Transform):
    name = "split"

    def __init__(self, delimiter: str = ","):
        self.delimiter = delimiter

    @classmethod
    def from_string(cls, spec: str):
        return cls(_param(spec) or ",")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if not isinstance(value, str):
            return value
        return [part.strip() for part in value.split(self.delimiter)]


class ConcatTransform(Transform):
    """Join row fields: ``concat(first_name, " ", last_name)``.

    Quoted arguments set the separator, other arguments name fields looked
    up in the context and then in ``context["row"]``. Empty parts are dropped.
    """

    name = "concat"

    def __init__(self, fields: list[str], separator: str = " "):
        self.fields = fields
        self.separator = separator

    @classmethod
    def from_string(cls, spec: str):
        separator = " "
        fields = []
        for arg in split_arguments(_call_arguments(spec, cls.name)):
            if _is_quoted(arg):
                separator = arg[1:-1]
            elif arg:
                fields.append(arg)
        return cls(fields, separator)

    def _lookup(self, field_name: str, context: Optional[dict]) -> Any:
        context = context or {}
        if field_name in context and field_name not in ("row", "warnings"):
            return context[field_name]
        return (context.get("row") or {}).get(field_name)

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        parts = []
        for field_name in self.fields:
            part = self._lookup(field_name, context)
            if part is None or str(part).strip() == "":
                continue
            parts.append(str(part))
        return self.separator.join(parts)


class RegexReplaceTransform(Transform):
    """``regex_replace(/pattern/flags, replacement)``, always global."""

    name = "regex_replace"
    FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}

    def __init__(self, pattern: str, replacement: str = "", flags: str = ""):
        re_flags = 0
        for flag in flags:
            re_flags |= self.FLAGS.get(flag.lower(), 0)
        self.regex = re.compile(pattern, re_flags)
        # $1 / ${1} backreferences
        self.replacement = re.sub(r"\$\{?(\d+)\}?", r"\\g<\1>", replacement)

    @classmethod
    def from_string(cls, spec: str):
        args = _call_arguments(spec, cls.name).strip()
        flags = ""
        if args.startswith("/"):
            end = cls._literal_end(args)
            pattern = args[1:end]
            rest = args[end + 1:]
            flag_match = re.match(r"[a-zA-Z]*", rest)
            flags = flag_match.group(0).replace("g", "").replace("G", "")
            rest = rest[flag_match.end():].lstrip()
            replacement = rest[1:] if rest.startswith(",") else rest
        else:
            pattern, _, replacement = args.partition(",")
            pattern = pattern.strip().strip("'\"")
        replacement = replacement.strip().strip("'\"")
        return cls(pattern, replacement, flags)

    @staticmethod
    def _literal_end(text: str) -> int:
        """Index of the closing '/' of a /pattern/ literal."""
        i = 1
        while i < len(text):
            if text[i] == "\\":
                i += 2
                continue
            if text[i] == "/":
                return i
            i += 1
        raise ValueError(f"Unterminated regex literal: {text}")

    def apply(self, value: Any, context: Optional[dict] = None) -> Any:
        if not isinstance(value, str):
            return value
        return self.regex.sub(self.replacement, value)


PARAMETERIZED_TRANSFORMS: dict[str, type[Transform]] = {
    cls.name: cls
    for cls in (
        CastTransform,
        DefaultTransform,
        HashTransform,
        TruncateTransform,
        PrefixTransform,
        SuffixTransform,
        RoundTransform,
        MultiplyTransform,
        DivideTransform,
        DateFormatTransform,
        ParseDateTransform,
        CoalesceTransform,
        SplitTransform,
        ConcatTransform,
        RegexReplaceTransform,
    )
}
