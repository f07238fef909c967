"""Structural fingerprint for Python sources.

The signature string captures declarations and control flow but not
formatting: comments, whitespace, docstrings, literal values and local
identifiers never reach it. Imports are sorted, so reordering them is not
a change; top-level declarations keep their source order, so reordering
them is.
"""

from __future__ import annotations

import ast
import hashlib
import logging
from pathlib import Path

from hcpcore.fingerprint.base import ParseError

logger = logging.getLogger(__name__)

_FUNCTIONS = (ast.FunctionDef, ast.AsyncFunctionDef)


def render_type(node: ast.AST | None) -> str:
    """Render an annotation or base expression by type names only."""
    if node is None:
        return "?"
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{render_type(node.value)}.{node.attr}"
    if isinstance(node, ast.Subscript):
        return f"{render_type(node.value)}[{render_type(node.slice)}]"
    if isinstance(node, ast.Tuple):
        return ",".join(render_type(elt) for elt in node.elts)
    if isinstance(node, ast.List):
        return "[" + ",".join(render_type(elt) for elt in node.elts) + "]"
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return f"{render_type(node.left)}|{render_type(node.right)}"
    if isinstance(node, ast.Call):
        return f"{render_type(node.func)}()"
    if isinstance(node, ast.Starred):
        return f"*{render_type(node.value)}"
    if isinstance(node, ast.Constant):
        if isinstance(node.value, str):
            return node.value.strip()
        if node.value is None:
            return "None"
        if node.value is Ellipsis:
            return "..."
    return "T"


def _types(nodes: list[ast.expr]) -> str:
    return "".join(f"{render_type(node)}," for node in nodes)


def _join_import(base: str, name: str) -> str:
    if not base or base.endswith("."):
        return f"{base}{name}"
    return f"{base}.{name}"


def collect_imports(tree: ast.AST) -> list[str]:
    """Every imported module name in the tree, sorted."""
    names: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            base = "." * node.level + (node.module or "")
            names.extend(_join_import(base, alias.name) for alias in node.names)
    return sorted(names)


class _BodyTokens(ast.NodeVisitor):
    """Flattens control-flow nodes and call targets in pre-order."""

    def __init__(self) -> None:
        self.tokens: list[str] = []

    @classmethod
    def collect(cls, nodes: list[ast.stmt] | ast.AST) -> str:
        visitor = cls()
        for node in nodes if isinstance(nodes, list) else [nodes]:
            visitor.visit(node)
        return "".join(visitor.tokens)

    def _emit(self, token: str, node: ast.AST) -> None:
        self.tokens.append(f"{token};")
        self.generic_visit(node)

    def visit_If(self, node: ast.If) -> None:
        self._emit("if", node)

    def visit_IfExp(self, node: ast.IfExp) -> None:
        self._emit("if", node)

    def visit_Match(self, node: ast.Match) -> None:
        self._emit("match", node)

    def visit_For(self, node: ast.For) -> None:
        self._emit("for", node)

    def visit_AsyncFor(self, node: ast.AsyncFor) -> None:
        self._emit("for", node)

    def visit_While(self, node: ast.While) -> None:
        self._emit("while", node)

    def visit_Return(self, node: ast.Return) -> None:
        self._emit("return", node)

    def visit_Assign(self, node: ast.Assign) -> None:
        self._emit("assign", node)

    def visit_AugAssign(self, node: ast.AugAssign) -> None:
        self._emit("assign", node)

    def visit_NamedExpr(self, node: ast.NamedExpr) -> None:
        self._emit("assign", node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        if node.value is None:
            self.generic_visit(node)
        else:
            self._emit("assign", node)

    def visit_Call(self, node: ast.Call) -> None:
        self.tokens.append("call;")
        if isinstance(node.func, ast.Name):
            self.tokens.append(f"{node.func.id};")
        elif isinstance(node.func, ast.Attribute):
            self.tokens.append(f"{node.func.attr};")
        self.generic_visit(node)


def _target_names(target: ast.expr) -> list[str]:
    if isinstance(target, ast.Name):
        return [target.id]
    if isinstance(target, (ast.Tuple, ast.List)):
        names: list[str] = []
        for elt in target.elts:
            names.extend(_target_names(elt))
        return names
    if isinstance(target, ast.Starred):
        return _target_names(target.value)
    return [render_type(target)]


class _SignatureBuilder:
    def __init__(self) -> None:
        self.parts: list[str] = []

    def text(self) -> str:
        return "".join(self.parts)

    def module(self, name: str, tree: ast.Module) -> None:
        self.parts.append(f"module:{name};")
        for imported in collect_imports(tree):
            self.parts.append(f"imp:{imported};")
        for stmt in tree.body:
            self.statement(stmt)

    def statement(self, stmt: ast.stmt) -> None:
        if isinstance(stmt, _FUNCTIONS):
            self.function(stmt)
        elif isinstance(stmt, ast.ClassDef):
            self.klass(stmt)
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                for name in _target_names(target):
                    self.parts.append(f"var:{name};")
        elif isinstance(stmt, ast.AnnAssign):
            for name in _target_names(stmt.target):
                self.parts.append(f"var:{name};{render_type(stmt.annotation)},;")
        elif isinstance(stmt, (ast.Import, ast.ImportFrom)):
            return
        elif isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Constant):
            return
        else:
            kind = type(stmt).__name__.lower()
            self.parts.append(f"stmt:{kind};body:{{{_BodyTokens.collect(stmt)}}};")

    def decorators(self, node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef) -> None:
        if node.decorator_list:
            self.parts.append(f"deco:{_types(node.decorator_list)};")

    def function(self, node: ast.FunctionDef | ast.AsyncFunctionDef, receiver: str | None = None) -> None:
        self.decorators(node)
        if receiver is not None:
            self.parts.append(f"recv:{receiver},;")
        kind = "async" if isinstance(node, ast.AsyncFunctionDef) else "func"
        self.parts.append(f"{kind}:{node.name};")

        args = node.args
        params = [render_type(a.annotation) for a in (*args.posonlyargs, *args.args)]
        if args.vararg is not None:
            params.append(f"*{render_type(args.vararg.annotation)}")
        params.extend(f"={render_type(a.annotation)}" for a in args.kwonlyargs)
        if args.kwarg is not None:
            params.append(f"**{render_type(args.kwarg.annotation)}")
        self.parts.append("params:" + "".join(f"{p}," for p in params) + ";")

        results = f"{render_type(node.returns)}," if node.returns is not None else ""
        self.parts.append(f"results:{results};")
        self.parts.append(f"body:{{{_BodyTokens.collect(node.body)}}};")

    def klass(self, node: ast.ClassDef) -> None:
        self.decorators(node)
        keywords = "".join(f"{kw.arg}={render_type(kw.value)}," for kw in node.keywords)
        self.parts.append(f"class:{node.name};bases:{_types(node.bases)}{keywords};")
        for stmt in node.body:
            if isinstance(stmt, _FUNCTIONS):
                self.function(stmt, receiver=node.name)
            elif isinstance(stmt, ast.ClassDef):
                self.klass(stmt)
            elif isinstance(stmt, ast.AnnAssign):
                for name in _target_names(stmt.target):
                    self.parts.append(f"attr:{name};{render_type(stmt.annotation)},;")
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    for name in _target_names(target):
                        self.parts.append(f"attr:{name};")


class PythonFingerprinter:
    """Logic fingerprint for ``.py`` and ``.pyi`` files."""

    def signature_from_source(self, source: bytes | str, module: str) -> str:
        """Canonical signature string for source text.

        Raises:
            ParseError: If the source is not valid Python
        """
        try:
            tree = ast.parse(source, filename=module)
            builder = _SignatureBuilder()
            builder.module(module, tree)
        except (SyntaxError, ValueError, RecursionError) as e:
            raise ParseError(module, str(e)) from e
        return builder.text()

    def signature(self, path: Path) -> str:
        path = Path(path)
        try:
            source = path.read_bytes()
        except OSError as e:
            raise ParseError(path, f"cannot read source: {e}") from e
        return self.signature_from_source(source, module=path.stem)

    def fingerprint(self, path: Path) -> str:
        signature = self.signature(path)
        logger.debug("Signature for %s: %d chars", path, len(signature))
        return hashlib.sha256(signature.encode("utf-8", "surrogateescape")).hexdigest()
