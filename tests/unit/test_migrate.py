import io
import sys
import tempfile
from contextlib import redirect_stdout
from pathlib import Path
import unittest

from sqlalchemy import create_engine, text

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from blight.infrastructure.db.sql import migrate


class SplitSqlStatementsTests(unittest.TestCase):
    def test_semicolons_inside_quotes_do_not_split(self) -> None:
        sql = "INSERT INTO t VALUES ('a;b');\n-- trailing; comment\nSELECT \"x;y\" FROM t;  \n"

        statements = migrate.split_sql_statements(sql)

        self.assertEqual(["INSERT INTO t VALUES ('a;b')", 'SELECT "x;y" FROM t'], statements)

    def test_statement_without_terminator_is_kept(self) -> None:
        self.assertEqual(["SELECT 1", "SELECT 2"], migrate.split_sql_statements("SELECT 1;\nSELECT 2"))


class MigrationPlanTests(unittest.TestCase):
    def test_dialects_resolve_their_schema_files(self) -> None:
        sqlite_plan = migrate.build_migration_plan("sqlite")
        mysql_plan = migrate.build_migration_plan("mysql")

        self.assertEqual("create_tables_sqlite.sql", sqlite_plan.file_path.name)
        self.assertEqual("create_tables.sql", mysql_plan.file_path.name)
        self.assertEqual(8, len(sqlite_plan.statements))
        self.assertEqual(6, len(mysql_plan.statements))

    def test_execute_applies_schema_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite:///{Path(tmp) / 'blight.db'}"
            plan = migrate.build_migration_plan("sqlite")

            first = migrate.execute_migration_plan(plan, url)
            second = migrate.execute_migration_plan(plan, url)

            engine = create_engine(url, future=True)
            try:
                with engine.connect() as conn:
                    tables = {
                        row[0]
                        for row in conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))
                    }
            finally:
                engine.dispose()

        self.assertEqual(8, first)
        self.assertEqual(0, second)
        self.assertTrue({"blight_character", "expiring_record", "blight_history", "schema_migrations"} <= tables)

    def test_dry_run_executes_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "blight.db"
            buffer = io.StringIO()
            with redirect_stdout(buffer):
                migrate.main(["--database-url", f"sqlite:///{db_path}", "--dry-run"])
            created = db_path.exists()

        self.assertIn("Dry run complete", buffer.getvalue())
        self.assertFalse(created)


if __name__ == "__main__":
    unittest.main()
