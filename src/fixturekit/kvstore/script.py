"""Seed scripts for the key-value store.

A seed script is a UTF-8 text file with one command per line:

```
# comment
SET greeting hello world
SET counter 1
```

Only `SET key value` is accepted. Keys are a single token; the value is the
rest of the line. Blank lines and lines starting with `#` are ignored.
"""

from pathlib import Path


class ScriptError(ValueError):
    """Raised when a seed script contains an invalid line.

    Attributes:
        path: Script the error was found in, if it came from a file.
        line_number: 1-based line number of the offending line.
    """

    def __init__(self, message: str, line_number: int, path: Path | None = None) -> None:
        location = f"{path}:{line_number}" if path is not None else f"line {line_number}"
        super().__init__(f"{location}: {message}")
        self.path = path
        self.line_number = line_number


def parse_script(text: str, path: Path | None = None) -> list[tuple[str, str]]:
    """Parse a seed script into `(key, value)` pairs in file order.

    Raises:
        ScriptError: On any line that is not a well-formed SET command.
    """
    assignments: list[tuple[str, str]] = []
    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 2)
        if parts[0].upper() != "SET":
            raise ScriptError(f"unsupported command '{parts[0]}'", line_number, path)
        if len(parts) < 3:
            raise ScriptError("SET requires a key and a value", line_number, path)
        assignments.append((parts[1], parts[2]))
    return assignments


def load_scripts(paths: list[Path]) -> dict[str, str]:
    """Apply seed scripts in order and return the resulting key space.

    Later scripts override keys set by earlier ones.

    Raises:
        ScriptError: If any script is malformed.
        OSError: If a script cannot be read.
    """
    data: dict[str, str] = {}
    for path in paths:
        data.update(parse_script(path.read_text(encoding="utf-8"), path))
    return data
