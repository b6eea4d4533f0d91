# tenant_plexus/provisioning/schema_builder.py
"""
Build-time schema compiler.

Parses the tenant schema source into tables, foreign keys and passthrough
statements, then renders two scripts: a tables-only script with every
foreign key removed, and a constraints script that adds them back. Both
are generated offline with `tenant-plexus schema build` and shipped in
`provisioning/sql/`; provisioning only ever loads the rendered files.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).parent / "sql"
SCHEMA_SOURCE_FILE = "tenant_schema.sql"
TABLES_FILE = "tenant_tables.sql"
CONSTRAINTS_FILE = "tenant_constraints.sql"
SEED_FILE = "tenant_seed.sql"

GENERATED_HEADER = "-- Generated by `tenant-plexus schema build` from {source}. Do not edit by hand.\n"

_NAME = r'(?:"[^"]+"|[\w.]+)'
_ACTION = r"(?:CASCADE|RESTRICT|NO\s+ACTION|SET\s+NULL|SET\s+DEFAULT)"

_CREATE_TABLE_RE = re.compile(
    rf"^CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?({_NAME})\s*\((.*)\)\s*$",
    re.IGNORECASE | re.DOTALL,
)
_ALTER_ADD_FK_RE = re.compile(
    rf"^ALTER\s+TABLE\s+(?:ONLY\s+)?(?:IF\s+EXISTS\s+)?({_NAME})\s+ADD\s+"
    rf"(?:CONSTRAINT\s+({_NAME})\s+)?FOREIGN\s+KEY\s*\(([^)]*)\)\s*"
    rf"REFERENCES\s+({_NAME})\s*(?:\(([^)]*)\))?(.*)$",
    re.IGNORECASE | re.DOTALL,
)
_TABLE_FK_RE = re.compile(
    rf"^(?:CONSTRAINT\s+({_NAME})\s+)?FOREIGN\s+KEY\s*\(([^)]*)\)\s*"
    rf"REFERENCES\s+({_NAME})\s*(?:\(([^)]*)\))?(.*)$",
    re.IGNORECASE | re.DOTALL,
)
_INLINE_REFERENCES_RE = re.compile(
    rf"\s+REFERENCES\s+({_NAME})\s*(?:\(([^)]*)\))?"
    rf"((?:\s+ON\s+(?:DELETE|UPDATE)\s+{_ACTION})*)"
    rf"(?:\s+(?:NOT\s+)?DEFERRABLE(?:\s+INITIALLY\s+(?:DEFERRED|IMMEDIATE))?)?",
    re.IGNORECASE,
)
_CREATE_TYPE_IF_NOT_EXISTS_RE = re.compile(
    rf"^CREATE\s+TYPE\s+IF\s+NOT\s+EXISTS\s+({_NAME})\s+(AS\s+.*)$",
    re.IGNORECASE | re.DOTALL,
)
_DOLLAR_TAG_RE = re.compile(r"\$[A-Za-z_]*\$")


def _ignore_duplicate(statement: str) -> str:
    """Wrap a statement in a block that treats an existing object as success."""
    return (
        "DO $$ BEGIN\n"
        f"    {statement}\n"
        "EXCEPTION\n"
        "    WHEN duplicate_object THEN null;\n"
        "END $$"
    )


@dataclass
class ForeignKeyDefinition:
    table: str
    columns: List[str]
    ref_table: str
    ref_columns: List[str] = field(default_factory=lambda: ["id"])
    actions: str = ""
    name: Optional[str] = None

    @property
    def constraint_name(self) -> str:
        return self.name or f"{_bare(self.table)}_{'_'.join(_bare(c) for c in self.columns)}_fkey"

    def render(self, guarded: bool = True) -> str:
        statement = (
            f"ALTER TABLE {self.table} ADD CONSTRAINT {self.constraint_name} "
            f"FOREIGN KEY ({', '.join(self.columns)}) "
            f"REFERENCES {self.ref_table} ({', '.join(self.ref_columns)})"
            f"{' ' + self.actions if self.actions else ''};"
        )
        if not guarded:
            return statement
        # Re-running the constraints pass must not fail on constraints that already exist
        return _ignore_duplicate(statement) + ";"


@dataclass
class TableDefinition:
    name: str
    elements: List[str] = field(default_factory=list)

    def render(self) -> str:
        body = ",\n".join(f"  {element}" for element in self.elements)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n{body}\n);"


@dataclass
class PassthroughStatement:
    sql: str

    def render(self) -> str:
        return f"{self.sql};"


@dataclass
class SchemaModel:
    items: List[Union[TableDefinition, PassthroughStatement]] = field(default_factory=list)
    foreign_keys: List[ForeignKeyDefinition] = field(default_factory=list)

    @property
    def tables(self) -> List[TableDefinition]:
        return [item for item in self.items if isinstance(item, TableDefinition)]

    def render_tables_script(self, source_name: Optional[str] = None) -> str:
        header = GENERATED_HEADER.format(source=source_name) + "\n" if source_name else ""
        return header + "\n\n".join(item.render() for item in self.items) + "\n"

    def render_constraints_script(self, source_name: Optional[str] = None, guarded: bool = True) -> str:
        header = GENERATED_HEADER.format(source=source_name) + "\n" if source_name else ""
        return header + "\n\n".join(fk.render(guarded=guarded) for fk in self.foreign_keys) + "\n"


def _bare(identifier: str) -> str:
    return identifier.strip().strip('"').split(".")[-1]


def _split_names(text: Optional[str]) -> List[str]:
    if not text:
        return ["id"]
    return [part.strip() for part in text.split(",") if part.strip()]


def _normalize_ws(text: str) -> str:
    return " ".join(text.split())


def split_statements(script: str) -> List[str]:
    """
    Split a SQL script into statements on top-level semicolons.

    Single-quoted strings and dollar-quoted bodies are kept intact; `--` and
    `/* */` comments outside them are dropped.
    """
    statements: List[str] = []
    buffer: List[str] = []
    i = 0
    length = len(script)

    while i < length:
        ch = script[i]
        if script.startswith("--", i):
            end = script.find("\n", i)
            i = length if end == -1 else end
            continue
        if script.startswith("/*", i):
            end = script.find("*/", i + 2)
            i = length if end == -1 else end + 2
            continue
        if ch == "'":
            j = i + 1
            while j < length:
                if script[j] == "'":
                    if j + 1 < length and script[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            buffer.append(script[i:j + 1])
            i = j + 1
            continue
        if ch == "$":
            match = _DOLLAR_TAG_RE.match(script, i)
            if match:
                tag = match.group(0)
                end = script.find(tag, match.end())
                end = length if end == -1 else end + len(tag)
                buffer.append(script[i:end])
                i = end
                continue
        if ch == ";":
            statement = "".join(buffer).strip()
            if statement:
                statements.append(statement)
            buffer = []
            i += 1
            continue
        buffer.append(ch)
        i += 1

    tail = "".join(buffer).strip()
    if tail:
        statements.append(tail)
    return statements


def _split_top_level(body: str) -> List[str]:
    """Split a CREATE TABLE body on commas outside parentheses and quotes."""
    parts: List[str] = []
    depth = 0
    in_quote = False
    start = 0
    for index, ch in enumerate(body):
        if ch == "'":
            in_quote = not in_quote
        elif in_quote:
            continue
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(body[start:index])
            start = index + 1
    parts.append(body[start:])
    return [_normalize_ws(part) for part in parts if part.strip()]


def _parse_table(name: str, body: str) -> Tuple[TableDefinition, List[ForeignKeyDefinition]]:
    table = TableDefinition(name=name)
    foreign_keys: List[ForeignKeyDefinition] = []

    for element in _split_top_level(body):
        table_fk = _TABLE_FK_RE.match(element)
        if table_fk:
            constraint, columns, ref_table, ref_columns, actions = table_fk.groups()
            foreign_keys.append(ForeignKeyDefinition(
                table=name,
                columns=_split_names(columns),
                ref_table=ref_table,
                ref_columns=_split_names(ref_columns),
                actions=_normalize_ws(actions or "").upper(),
                name=constraint
            ))
            continue

        inline = _INLINE_REFERENCES_RE.search(element)
        if inline:
            ref_table, ref_columns, actions = inline.groups()
            column = element.split()[0]
            foreign_keys.append(ForeignKeyDefinition(
                table=name,
                columns=[column],
                ref_table=ref_table,
                ref_columns=_split_names(ref_columns),
                actions=_normalize_ws(actions or "").upper()
            ))
            element = _normalize_ws(element[:inline.start()] + element[inline.end():])

        table.elements.append(element)

    return table, foreign_keys


def parse_schema(script: str) -> SchemaModel:
    """Parse schema source text into a structured model."""
    model = SchemaModel()
    for statement in split_statements(script):
        create = _CREATE_TABLE_RE.match(statement)
        if create:
            table, foreign_keys = _parse_table(create.group(1), create.group(2))
            model.items.append(table)
            model.foreign_keys.extend(foreign_keys)
            continue

        alter = _ALTER_ADD_FK_RE.match(statement)
        if alter:
            table_name, constraint, columns, ref_table, ref_columns, actions = alter.groups()
            model.foreign_keys.append(ForeignKeyDefinition(
                table=table_name,
                columns=_split_names(columns),
                ref_table=ref_table,
                ref_columns=_split_names(ref_columns),
                actions=_normalize_ws(actions or "").upper(),
                name=constraint
            ))
            continue

        create_type = _CREATE_TYPE_IF_NOT_EXISTS_RE.match(statement)
        if create_type:
            # PostgreSQL has no IF NOT EXISTS for types
            type_name, definition = create_type.groups()
            model.items.append(PassthroughStatement(_ignore_duplicate(f"CREATE TYPE {type_name} {definition};")))
            continue

        model.items.append(PassthroughStatement(statement))

    logger.debug(
        f"Parsed schema: {len(model.tables)} tables, {len(model.foreign_keys)} foreign keys, "
        f"{len(model.items) - len(model.tables)} other statements"
    )
    return model


def build_schema_artifacts(
    source_path: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    guarded_constraints: bool = True
) -> SchemaModel:
    """
    Render the tables-only and constraints scripts from a schema source file.

    Args:
        source_path: Schema source. Defaults to the packaged tenant_schema.sql.
        output_dir: Where to write the two scripts. Defaults to the packaged sql/ directory.
        guarded_constraints: Wrap each constraint so re-applying it is a no-op

    Returns:
        The parsed schema model
    """
    source_path = Path(source_path or SQL_DIR / SCHEMA_SOURCE_FILE)
    output_dir = Path(output_dir or SQL_DIR)

    model = parse_schema(source_path.read_text(encoding="utf-8"))
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / TABLES_FILE).write_text(
        model.render_tables_script(source_path.name), encoding="utf-8"
    )
    (output_dir / CONSTRAINTS_FILE).write_text(
        model.render_constraints_script(source_path.name, guarded=guarded_constraints), encoding="utf-8"
    )
    logger.info(
        f"Wrote {TABLES_FILE} ({len(model.tables)} tables) and "
        f"{CONSTRAINTS_FILE} ({len(model.foreign_keys)} foreign keys) to {output_dir}"
    )
    return model


@dataclass
class SchemaBundle:
    """The pre-rendered scripts a provisioning run applies, in order."""
    tables_sql: str
    constraints_sql: str
    seed_sql: str
    table_names: List[str] = field(default_factory=list)

    @classmethod
    def load(cls, sql_dir: Optional[Path] = None) -> "SchemaBundle":
        sql_dir = Path(sql_dir or SQL_DIR)
        tables_sql = (sql_dir / TABLES_FILE).read_text(encoding="utf-8")
        return cls(
            tables_sql=tables_sql,
            constraints_sql=(sql_dir / CONSTRAINTS_FILE).read_text(encoding="utf-8"),
            seed_sql=(sql_dir / SEED_FILE).read_text(encoding="utf-8"),
            table_names=table_names(tables_sql)
        )

    def render_seed(self, tenant_id: str, slug: str) -> str:
        """Substitute the store placeholders in the seed script."""
        return (
            self.seed_sql
            .replace("{{STORE_ID}}", tenant_id.replace("'", "''"))
            .replace("{{STORE_SLUG}}", slug.replace("'", "''"))
        )

    @property
    def has_constraints(self) -> bool:
        return bool(split_statements(self.constraints_sql))


def table_names(script: str) -> List[str]:
    """Names of the tables a rendered script creates, in creation order."""
    return [
        match.group(1)
        for match in map(_CREATE_TABLE_RE.match, split_statements(script))
        if match
    ]
