"""
Dialect-specific SQL expressions.

``add_millis(ts, ms)`` renders ``ts + ms milliseconds`` so that deadline
recomputation happens inside a single UPDATE, per row, on the server.
A NULL duration yields a NULL deadline on every dialect.
"""

from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.exc import CompileError
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement


class add_millis(FunctionElement):
    """Timestamp plus an integer number of milliseconds."""

    type = DateTime()
    name = "add_millis"
    inherit_cache = True


def _operands(element: add_millis, compiler: Any, **kw: Any) -> tuple[str, str]:
    ts, ms = list(element.clauses)
    return compiler.process(ts, **kw), compiler.process(ms, **kw)


@compiles(add_millis)
def _compile_default(element: add_millis, compiler: Any, **kw: Any) -> str:
    raise CompileError(
        f"add_millis is not supported on dialect {compiler.dialect.name}"
    )


@compiles(add_millis, "postgresql")
def _compile_postgresql(element: add_millis, compiler: Any, **kw: Any) -> str:
    ts, ms = _operands(element, compiler, **kw)
    return f"(CAST({ts} AS TIMESTAMP) + {ms} * INTERVAL '1 millisecond')"


@compiles(add_millis, "sqlite")
def _compile_sqlite(element: add_millis, compiler: Any, **kw: Any) -> str:
    ts, ms = _operands(element, compiler, **kw)
    return (
        f"strftime('%Y-%m-%d %H:%M:%f', {ts}, "
        f"'+' || ({ms} / 1000.0) || ' seconds')"
    )
