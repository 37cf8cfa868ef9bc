"""cmbuild - ARM Cortex-M firmware build system."""

__version__ = "0.1.0"
