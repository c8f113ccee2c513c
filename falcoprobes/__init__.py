"""Build Falco eBPF probes for Amazon Linux 2 and Container-Optimized OS kernels and publish them to GitHub Releases."""

__version__ = "0.1.0"