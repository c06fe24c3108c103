from pathlib import Path

from context_bundler import cli
from context_bundler.content import BINARY_PLACEHOLDER


def test_end_to_end_code_dump(tmp_path: Path) -> None:
    repo = tmp_path / "webapp"
    files = {
        "src/a.ts": "x" * 40,
        "src/index.ts": "export const a = 1;\n",
        "package.json": '{"name": "webapp"}\n',
        "node_modules/left-pad/index.js": "module.exports = 1;\n",
    }
    for rel, text in files.items():
        path = repo / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    (repo / "src" / "b.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 1992)

    output = tmp_path / "bundle.txt"

    exit_code = cli.main(
        [
            "--folder",
            str(repo),
            "--file-types",
            ".ts,.png,package.json",
            "--output",
            str(output),
            "--no-tokenizer",
        ],
    )

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert text.startswith("Project Structure:\n")
    assert "// src/a.ts\n" + "x" * 40 + "\n" in text
    assert f"// src/b.png\n{BINARY_PLACEHOLDER}\n" in text
    assert text.index("// src/a.ts") < text.index("// src/b.png") < text.index("// src/index.ts")
    assert text.index("// src/index.ts") < text.index("// package.json")
    assert "left-pad" not in text
    assert "\x00" not in text


def test_end_to_end_minified_tree_and_paths(tmp_path: Path) -> None:
    repo = tmp_path / "lib"
    (repo / "pkg").mkdir(parents=True)
    (repo / "pkg" / "core.py").write_text("def f( a ):\n    # note\n    return a\n", encoding="utf-8")
    (repo / "README.md").write_text("# Lib\n", encoding="utf-8")

    tree_out = tmp_path / "tree.txt"
    code_out = tmp_path / "code.txt"

    assert cli.main(["--folder", str(repo), "--format", "tree", "--output", str(tree_out), "--no-tokenizer"]) == 0
    assert cli.main(["--folder", str(repo), "--minify", "--output", str(code_out), "--no-tokenizer"]) == 0

    assert tree_out.read_text(encoding="utf-8") == "├── pkg/\n│   └── core.py\n└── README.md\n"
    code = code_out.read_text(encoding="utf-8")
    assert "# note" not in code
    assert "// README.md\n" in code
