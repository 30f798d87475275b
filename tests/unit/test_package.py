"""Tests for the package surface."""

import ast
import textwrap

import cutover


def usage_block() -> str:
    _, _, usage = cutover.__doc__.partition("Usage:\n")
    return textwrap.dedent(usage)


def test_usage_example_is_valid_module_code():
    tree = ast.parse(usage_block())

    assert not any(isinstance(node, ast.Await) for node in ast.walk(tree))
    assert ">>>" not in usage_block()


def test_usage_example_uses_public_names():
    source = usage_block()

    for name in ("load_config", "build_orchestrator", "deploy"):
        assert name in source
    assert "load_config" in cutover.__all__
