"""Ekin Otomasyon office panel: records, warranty tracking and activity logs."""

__version__ = "1.0.0"
