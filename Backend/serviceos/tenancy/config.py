"""
Tenancy configuration constants.

Static schema knowledge for the tenant-scope registry. Every model listed
in TENANT_MODELS must map a table that follows the column convention
below; every mapped model must appear in exactly one of the two lists.
"""

# ────────────────────────────────────────────────────────────────
# Column convention
# ────────────────────────────────────────────────────────────────

TENANT_COLUMN = "id_doanh_nghiep"       # non-null on every tenant-scoped table
DELETED_AT_COLUMN = "ngay_xoa"          # nullable; set = soft-deleted
CREATOR_COLUMN = "nguoi_tao_id"         # nullable actor id
UPDATER_COLUMN = "nguoi_cap_nhat_id"    # nullable actor id


# ────────────────────────────────────────────────────────────────
# Manifest
# ────────────────────────────────────────────────────────────────

# Models carrying a tenant column (nearly all business tables)
TENANT_MODELS: tuple[str, ...] = (
    "NguoiDung",
    "KhachHang",
    "CongViec",
    "PhanCong",
    "NghiemThuHinhAnh",
    "CaLamViec",
    "ChamCong",
    "Kho",
    "SanPham",
    "TonKho",
    "LichSuKho",
    "TaiSan",
    "NhatKySuDung",
    "LoTrinh",
    "DiemDung",
    "BaoGia",
    "ChiTietBaoGia",
    "HopDong",
    "PhieuThuChi",
    "TaiKhoanKhach",
    "DanhGia",
    "NhaCungCap",
    "DonDatHangNcc",
    "ChiTietDonDatHang",
    "ThongBao",
)

# Models with no tenant owner (the tenant table itself, SaaS billing)
GLOBAL_MODELS: tuple[str, ...] = (
    "DoanhNghiep",
    "ThanhToanSaas",
)
