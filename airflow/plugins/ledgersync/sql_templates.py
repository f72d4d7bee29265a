"""
SQL Templates Loader for the ledger sync engine.

Every statement the engine sends to SQL Server is a Jinja2 template under
ledgersync/sql/. Identifiers (schemas, tables, columns) are validated and
bracket-quoted by filters; values are never rendered into SQL, they are
passed to the driver as %s parameters.

Usage Examples:
--------------

1. Render a template:

    from ledgersync.sql_templates import render_sql

    sql = render_sql('sqlserver/destination/merge.sql.j2',
                     schema='analytics',
                     table='dim_Account',
                     staging_table='stg_dim_Account',
                     columns=['SystemId', 'No', 'Name'],
                     key_columns=['SystemId'])

2. Filters available inside templates:

    {{ table | q }}                 ->  [dim_Account]
    {{ columns | q_list }}          ->  [SystemId], [No], [Name]
    {{ staging_table | validate_id }} -> stg_dim_Account (validated, unquoted)

3. StrictUndefined:

    A misspelled variable raises UndefinedError instead of rendering ''.
"""
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

logger = logging.getLogger(__name__)

# SQL directory shipped inside the package (ledgersync/sql/)
SQL_DIR = Path(__file__).parent / "sql"


class IdentifierFilter:
    """
    SQL identifier validator to prevent SQL injection.

    Only letters, digits and underscores are accepted; SQL Server object
    names used by the engine (analytics.dim_Account, dbo.SyncHistory, ...)
    never need anything else.
    """

    VALID_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

    @classmethod
    def validate(cls, identifier: str) -> str:
        """
        Validate that an identifier contains only safe characters.

        Raises:
            ValueError: If the identifier is empty, not a string, or unsafe
        """
        if not isinstance(identifier, str):
            raise ValueError(f"Identifier must be a string, got {type(identifier).__name__}")

        if not identifier:
            raise ValueError("Identifier cannot be empty")

        if not cls.VALID_PATTERN.match(identifier):
            raise ValueError(
                f"Invalid SQL identifier: '{identifier}'. "
                f"Only letters, digits and underscores are allowed."
            )

        return identifier


def quote_sqlserver(identifier: str) -> str:
    """
    Validate and bracket-quote an identifier for SQL Server.

    Example:
        {{ table | q }}  ->  [dim_Account]
    """
    return f'[{IdentifierFilter.validate(identifier)}]'


def quote_list(identifiers: Iterable[str]) -> str:
    """
    Quote each identifier and join with ', '.

    Example:
        {{ ['SystemId', 'Name'] | q_list }}  ->  [SystemId], [Name]
    """
    return ', '.join(quote_sqlserver(i) for i in identifiers)


def validate_id(identifier: str) -> str:
    """Validate an identifier without quoting (used for #temp table names)."""
    return IdentifierFilter.validate(identifier)


class SQLTemplates:
    """
    SQL template loader with a strict Jinja2 environment.

    Attributes:
        env: Jinja2 Environment configured for SQL
        sql_dir: Directory templates are loaded from
    """

    def __init__(self, sql_dir: Optional[Path] = None):
        self.sql_dir = sql_dir or SQL_DIR

        if not self.sql_dir.exists():
            logger.warning(f"SQL templates directory does not exist: {self.sql_dir}")

        self.env = Environment(
            loader=FileSystemLoader(str(self.sql_dir)),
            undefined=StrictUndefined,
            autoescape=False,  # SQL, not HTML
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )

        self.env.filters['q'] = quote_sqlserver
        self.env.filters['q_list'] = quote_list
        self.env.filters['validate_id'] = validate_id

    @lru_cache(maxsize=64)
    def _load_template(self, template_path: str):
        return self.env.get_template(template_path)

    def render(self, template_path: str, **kwargs: Any) -> str:
        """
        Render a SQL template file.

        Args:
            template_path: Path relative to sql_dir
                (e.g., 'sqlserver/sync_log/get_last_sync.sql.j2')
            **kwargs: Template variables

        Returns:
            Rendered SQL, stripped of surrounding whitespace

        Raises:
            TemplateNotFound: If the template file doesn't exist
            jinja2.UndefinedError: If a required variable is missing
            ValueError: If an identifier fails validation
        """
        template = self._load_template(template_path)
        return template.render(**kwargs).strip()


_sql_templates_instance: Optional[SQLTemplates] = None


def get_sql_templates() -> SQLTemplates:
    """Shared SQLTemplates instance (template cache is shared by all callers)."""
    global _sql_templates_instance
    if _sql_templates_instance is None:
        _sql_templates_instance = SQLTemplates()
    return _sql_templates_instance


def render_sql(template_path: str, **kwargs: Any) -> str:
    """
    Shorthand for get_sql_templates().render(...).

    Example:
        sql = render_sql('sqlserver/sync_log/get_last_sync.sql.j2',
                         schema='analytics', multi_tenant=True)
    """
    return get_sql_templates().render(template_path, **kwargs)
