from pathlib import Path

from routeaudit.repo.scanner import PYTHON_SUFFIXES, SCRIPT_SUFFIXES, scan_source_files


def test_scan_source_files_finds_src_files():
    repo_root = Path(__file__).resolve().parents[1]
    files = scan_source_files(repo_root / "src", PYTHON_SUFFIXES, max_files=5000)

    target = (repo_root / "src" / "routeaudit" / "cli.py").resolve()
    assert target in files


def test_scan_source_files_prunes_ignored_dirs_and_filters_suffixes(tmp_path: Path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "api.js").write_text("")
    (tmp_path / "src" / "App.tsx").write_text("")
    (tmp_path / "src" / "styles.css").write_text("")
    (tmp_path / "node_modules" / "axios").mkdir(parents=True)
    (tmp_path / "node_modules" / "axios" / "index.js").write_text("")

    files = scan_source_files(tmp_path, SCRIPT_SUFFIXES)
    assert [f.name for f in files] == ["App.tsx", "api.js"]


def test_scan_source_files_missing_root(tmp_path: Path):
    assert scan_source_files(tmp_path / "nope") == []
