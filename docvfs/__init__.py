"""Expose remote storage as a tree of documents to a host application."""
