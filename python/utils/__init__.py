"""Shared helpers: configuration, logging, errors, object store client and reports."""
