"""Every third-party import in the service is declared in pyproject.toml."""
import ast
import re
import sys
from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent

# import name → distribution name on the index
DISTRIBUTIONS = {
    "flask": "flask",
    "werkzeug": "werkzeug",
    "flask_sqlalchemy": "flask-sqlalchemy",
    "sqlalchemy": "sqlalchemy",
    "flask_migrate": "flask-migrate",
    "alembic": "alembic",
    "flask_cors": "flask-cors",
    "flask_limiter": "flask-limiter",
    "jwt": "pyjwt",
}


def _sources():
    yield from (ROOT / "it_portal").rglob("*.py")
    yield from (ROOT / "migrations").rglob("*.py")
    yield ROOT / "wsgi.py"


def _top_level_imports(path):
    tree = ast.parse(path.read_text(encoding="utf-8"))
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield alias.name.split(".")[0]
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            yield node.module.split(".")[0]


def _declared():
    with open(ROOT / "pyproject.toml", "rb") as fh:
        project = tomllib.load(fh)["project"]
    return {re.split(r"[<>=!~\[ ;]", req, 1)[0].lower() for req in project["dependencies"]}


def test_third_party_imports_declared():
    imported = {
        name
        for path in _sources()
        for name in _top_level_imports(path)
        if name not in sys.stdlib_module_names and name not in ("it_portal", "__future__")
    }
    unknown = imported - DISTRIBUTIONS.keys()
    assert not unknown, f"no distribution mapped for {sorted(unknown)}"

    missing = {DISTRIBUTIONS[name] for name in imported} - _declared()
    assert not missing, f"imported but not declared: {sorted(missing)}"
