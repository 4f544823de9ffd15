from __future__ import annotations

import ast
import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

ROOT = Path(__file__).resolve().parents[2]
SRC_ROOT = ROOT / "src" / "blight"

_FORBIDDEN_TARGETS = {
    "domain": {"application", "infrastructure", "presentation", "bootstrap"},
    "application": {"infrastructure", "presentation", "bootstrap"},
}


def _module_name(path: Path) -> str:
    return ".".join(path.relative_to(ROOT / "src").with_suffix("").parts)


def _layer(module: str) -> str | None:
    parts = module.split(".")
    return parts[1] if len(parts) > 1 and parts[0] == "blight" else None


def _imported_modules(module: str, tree: ast.AST) -> set[str]:
    found: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            found.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            if node.level:
                base = module.split(".")[: -node.level]
                found.add(".".join(base + ([node.module] if node.module else [])))
            elif node.module:
                found.add(node.module)
    return {name for name in found if name.startswith("blight")}


def _import_graph() -> dict[str, set[str]]:
    modules = {_module_name(path): path for path in SRC_ROOT.rglob("*.py")}
    graph: dict[str, set[str]] = {}
    for module, path in modules.items():
        targets = set()
        for target in _imported_modules(module, ast.parse(path.read_text(encoding="utf-8"))):
            while target not in modules and "." in target:
                target = target.rsplit(".", 1)[0]
            if target in modules and target != module:
                targets.add(target)
        graph[module] = targets
    return graph


class ArchitectureGuardrailTests(unittest.TestCase):
    def test_inner_layers_do_not_import_outer_layers(self) -> None:
        violations = []
        for source, targets in _import_graph().items():
            forbidden = _FORBIDDEN_TARGETS.get(_layer(source) or "", set())
            violations.extend(f"{source} -> {target}" for target in sorted(targets) if _layer(target) in forbidden)

        self.assertEqual([], violations)

    def test_import_graph_has_no_cycles(self) -> None:
        graph = _import_graph()
        visiting: list[str] = []
        done: set[str] = set()

        def visit(node: str) -> list[str]:
            if node in visiting:
                return visiting[visiting.index(node):] + [node]
            if node in done:
                return []
            visiting.append(node)
            for target in sorted(graph.get(node, set())):
                cycle = visit(target)
                if cycle:
                    return cycle
            visiting.pop()
            done.add(node)
            return []

        for module in sorted(graph):
            cycle = visit(module)
            self.assertEqual([], cycle, " -> ".join(cycle))


if __name__ == "__main__":
    unittest.main()
