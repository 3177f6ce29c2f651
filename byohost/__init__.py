"""Cloud-init bootstrap execution and Kubernetes component installation for bring-your-own hosts."""

__version__ = "0.1.0"