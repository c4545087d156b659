"""
Tenant scoping lint tests.

Run with: pytest tests/test_scoping_check.py -v
"""

from pathlib import Path

import serviceos
from serviceos.scoping_check import main, scan_directory, scan_file, should_exclude


def write(tmp_path: Path, name: str, body: str) -> Path:
    path = tmp_path / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    return path


class TestScanFile:
    def test_flags_direct_statements(self, tmp_path):
        path = write(tmp_path, "quotes.py", "stmt = select(BaoGia).where(BaoGia.id == quote_id)\n")
        findings = scan_file(path)
        assert [f.severity for f in findings] == ["CRITICAL"]
        assert findings[0].line_num == 1

    def test_flags_raw_sql_and_engine_use(self, tmp_path):
        path = write(
            tmp_path,
            "report.py",
            "async with engine.begin() as conn:\n"
            "    await conn.execute(text('SELECT * FROM khach_hang'))\n",
        )
        assert sorted(f.severity for f in scan_file(path)) == ["HIGH", "HIGH"]

    def test_system_override_needs_reason(self, tmp_path):
        path = write(
            tmp_path,
            "jobs.py",
            "await with_system_context(client.model('Kho').count)\n"
            "await with_system_context(\n"
            "    client.model('Kho').count,\n"
            "    reason='nightly stock report',\n"
            ")\n",
        )
        findings = scan_file(path)
        assert [(f.severity, f.line_num) for f in findings] == [("MEDIUM", 1)]

    def test_hardcoded_tenant_id(self, tmp_path):
        path = write(tmp_path, "seed.py", 'row = {"id_doanh_nghiep": "aaaaaaaa-0000-4000"}\n')
        assert [f.severity for f in scan_file(path)] == ["WARNING"]

    def test_comments_and_suppressions_are_skipped(self, tmp_path):
        path = write(
            tmp_path,
            "ok.py",
            "# select(KhachHang) is what the client does for you\n"
            "async with engine.begin() as conn:  # noqa: tenant-scoping\n"
            "rows = await client.model('KhachHang').find_many()\n",
        )
        assert scan_file(path) == []


class TestScanDirectory:
    def test_tenancy_package_is_excluded(self, tmp_path):
        write(tmp_path, "tenancy/client.py", "result = await conn.execute(text(sql), params)\n")
        write(tmp_path, "services/quotes.py", "stmt = update(BaoGia).values(trang_thai='HET_HAN')\n")

        findings = scan_directory(tmp_path)
        assert [f.file.name for f in findings] == ["quotes.py"]
        assert should_exclude(Path("tenancy/client.py"))

    def test_application_code_is_clean(self):
        root = Path(serviceos.__file__).parent
        findings = scan_directory(root)
        assert [f for f in findings if f.severity in ("CRITICAL", "HIGH")] == []


class TestMain:
    def test_strict_fails_on_critical(self, tmp_path, capsys):
        write(tmp_path, "bad.py", "stmt = delete(KhachHang)\n")
        assert main(["--strict", "-v", "--path", str(tmp_path)]) == 1
        out = capsys.readouterr().out
        assert "CRITICAL: 1" in out
        assert "bad.py:1" in out

    def test_clean_tree_passes(self, tmp_path, capsys):
        write(tmp_path, "good.py", "rows = await client.model('KhachHang').find_many()\n")
        assert main(["--strict", "--path", str(tmp_path)]) == 0
        assert "No tenant scoping issues found!" in capsys.readouterr().out

    def test_missing_path(self, tmp_path):
        assert main(["--path", str(tmp_path / "nope")]) == 1
