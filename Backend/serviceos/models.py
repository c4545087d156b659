"""
Table mappings for the tenant-scope registry.

Business columns are kept to what the data access layer and its callers
touch; the column convention (tenant id, soft delete, audit ids) is what
the registry checks at startup.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from .core.db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────────────────────────────────────
# Column convention mixins
# ────────────────────────────────────────────────────────────────

class RecordMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ngay_tao: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    ngay_cap_nhat: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class AuditMixin:
    nguoi_tao_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    nguoi_cap_nhat_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)


class SoftDeleteMixin:
    ngay_xoa: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class TenantMixin(RecordMixin, AuditMixin):
    @declared_attr
    def id_doanh_nghiep(cls) -> Mapped[str]:
        return mapped_column(String(36), ForeignKey("doanh_nghiep.id"), nullable=False, index=True)


class SoftDeleteTenantMixin(TenantMixin, SoftDeleteMixin):
    pass


# ────────────────────────────────────────────────────────────────
# Global (no tenant owner)
# ────────────────────────────────────────────────────────────────

class DoanhNghiep(RecordMixin, AuditMixin, SoftDeleteMixin, Base):
    __tablename__ = "doanh_nghiep"

    ten_doanh_nghiep: Mapped[str] = mapped_column(String(255), nullable=False)
    goi_cuoc: Mapped[str] = mapped_column(String(32), default="FREE", nullable=False)
    trang_thai: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class ThanhToanSaas(RecordMixin, AuditMixin, Base):
    __tablename__ = "thanh_toan_saas"

    # References the billed tenant but is not filtered by it
    id_doanh_nghiep: Mapped[str] = mapped_column(String(36), ForeignKey("doanh_nghiep.id"), nullable=False)
    so_tien: Mapped[int] = mapped_column(BigInteger, nullable=False)
    goi_cuoc: Mapped[str] = mapped_column(String(32), nullable=False)


# ────────────────────────────────────────────────────────────────
# Core / CRM
# ────────────────────────────────────────────────────────────────

class NguoiDung(SoftDeleteTenantMixin, Base):
    __tablename__ = "nguoi_dung"

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ho_ten: Mapped[str] = mapped_column(String(255), nullable=False)
    vai_tro: Mapped[str] = mapped_column(String(32), default="NHAN_VIEN", nullable=False)


class KhachHang(SoftDeleteTenantMixin, Base):
    __tablename__ = "khach_hang"

    ho_ten: Mapped[str] = mapped_column(String(255), nullable=False)
    so_dien_thoai: Mapped[Optional[str]] = mapped_column(String(32))
    email: Mapped[Optional[str]] = mapped_column(String(255))


class TaiKhoanKhach(SoftDeleteTenantMixin, Base):
    __tablename__ = "tai_khoan_khach"

    id_khach_hang: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)


class DanhGia(SoftDeleteTenantMixin, Base):
    __tablename__ = "danh_gia"

    id_cong_viec: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    diem: Mapped[int] = mapped_column(Integer, nullable=False)
    nhan_xet: Mapped[Optional[str]] = mapped_column(Text)


class ThongBao(SoftDeleteTenantMixin, Base):
    __tablename__ = "thong_bao"

    id_nguoi_nhan: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tieu_de: Mapped[str] = mapped_column(String(255), nullable=False)
    noi_dung: Mapped[Optional[str]] = mapped_column(Text)
    loai_thong_bao: Mapped[str] = mapped_column(String(32), default="KHAC", nullable=False)
    id_doi_tuong_lien_quan: Mapped[Optional[str]] = mapped_column(String(36))
    loai_doi_tuong: Mapped[Optional[str]] = mapped_column(String(32))
    da_xem: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ngay_xem: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ────────────────────────────────────────────────────────────────
# Field service (jobs, shifts)
# ────────────────────────────────────────────────────────────────

class CongViec(SoftDeleteTenantMixin, Base):
    __tablename__ = "cong_viec"

    tieu_de: Mapped[str] = mapped_column(String(255), nullable=False)
    id_khach_hang: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    trang_thai: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class PhanCong(SoftDeleteTenantMixin, Base):
    __tablename__ = "phan_cong"

    id_cong_viec: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    id_nguoi_dung: Mapped[str] = mapped_column(String(36), nullable=False, index=True)


class NghiemThuHinhAnh(SoftDeleteTenantMixin, Base):
    __tablename__ = "nghiem_thu_hinh_anh"

    id_cong_viec: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    duong_dan: Mapped[str] = mapped_column(String(512), nullable=False)


class CaLamViec(SoftDeleteTenantMixin, Base):
    __tablename__ = "ca_lam_viec"

    ten_ca: Mapped[str] = mapped_column(String(128), nullable=False)


class ChamCong(SoftDeleteTenantMixin, Base):
    __tablename__ = "cham_cong"

    id_nguoi_dung: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    id_ca_lam_viec: Mapped[Optional[str]] = mapped_column(String(36))
    gio_vao: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ────────────────────────────────────────────────────────────────
# Inventory
# ────────────────────────────────────────────────────────────────

class Kho(SoftDeleteTenantMixin, Base):
    __tablename__ = "kho"

    ten_kho: Mapped[str] = mapped_column(String(255), nullable=False)
    loai_kho: Mapped[Optional[str]] = mapped_column(String(32))
    dia_chi: Mapped[Optional[str]] = mapped_column(String(512))
    trang_thai: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class SanPham(SoftDeleteTenantMixin, Base):
    __tablename__ = "san_pham"

    ten_san_pham: Mapped[str] = mapped_column(String(255), nullable=False)
    ma_san_pham: Mapped[Optional[str]] = mapped_column(String(64))
    gia_ban: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class TonKho(SoftDeleteTenantMixin, Base):
    __tablename__ = "ton_kho"

    id_kho: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    id_san_pham: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    so_luong: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class LichSuKho(TenantMixin, Base):
    """Append-only stock ledger; no soft delete."""

    __tablename__ = "lich_su_kho"

    id_kho: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    id_san_pham: Mapped[str] = mapped_column(String(36), nullable=False)
    so_luong_thay_doi: Mapped[int] = mapped_column(Integer, nullable=False)


# ────────────────────────────────────────────────────────────────
# Assets and routes
# ────────────────────────────────────────────────────────────────

class TaiSan(SoftDeleteTenantMixin, Base):
    __tablename__ = "tai_san"

    ten_tai_san: Mapped[str] = mapped_column(String(255), nullable=False)
    gia_tri: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class NhatKySuDung(TenantMixin, Base):
    """Asset usage log; no soft delete."""

    __tablename__ = "nhat_ky_su_dung"

    id_tai_san: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    ghi_chu: Mapped[Optional[str]] = mapped_column(Text)


class LoTrinh(SoftDeleteTenantMixin, Base):
    __tablename__ = "lo_trinh"

    ten_lo_trinh: Mapped[str] = mapped_column(String(255), nullable=False)


class DiemDung(SoftDeleteTenantMixin, Base):
    __tablename__ = "diem_dung"

    id_lo_trinh: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    thu_tu: Mapped[int] = mapped_column(Integer, nullable=False)


# ────────────────────────────────────────────────────────────────
# Sales, finance, procurement
# ────────────────────────────────────────────────────────────────

class BaoGia(SoftDeleteTenantMixin, Base):
    __tablename__ = "bao_gia"

    tieu_de: Mapped[str] = mapped_column(String(255), nullable=False)
    tong_tien: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    trang_thai: Mapped[str] = mapped_column(String(32), default="MOI", nullable=False)


class ChiTietBaoGia(SoftDeleteTenantMixin, Base):
    __tablename__ = "chi_tiet_bao_gia"

    id_bao_gia: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    so_luong: Mapped[int] = mapped_column(Integer, nullable=False)
    don_gia: Mapped[int] = mapped_column(BigInteger, nullable=False)


class HopDong(SoftDeleteTenantMixin, Base):
    __tablename__ = "hop_dong"

    ma_hop_dong: Mapped[str] = mapped_column(String(64), nullable=False)
    gia_tri: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class PhieuThuChi(SoftDeleteTenantMixin, Base):
    __tablename__ = "phieu_thu_chi"

    loai_phieu: Mapped[str] = mapped_column(String(16), nullable=False)  # THU / CHI
    so_tien: Mapped[int] = mapped_column(BigInteger, nullable=False)


class NhaCungCap(SoftDeleteTenantMixin, Base):
    __tablename__ = "nha_cung_cap"

    ten_nha_cung_cap: Mapped[str] = mapped_column(String(255), nullable=False)


class DonDatHangNcc(SoftDeleteTenantMixin, Base):
    __tablename__ = "don_dat_hang_ncc"

    id_nha_cung_cap: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    tong_tien: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class ChiTietDonDatHang(SoftDeleteTenantMixin, Base):
    __tablename__ = "chi_tiet_don_dat_hang"

    id_don_dat_hang: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    so_luong: Mapped[int] = mapped_column(Integer, nullable=False)
