"""Collaborator adapters: document stores (``nosql``) and external caches (``cache``)."""
