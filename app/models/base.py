"""Shared table metadata."""

from sqlalchemy import MetaData

# Single metadata so cross-table foreign keys resolve for create_all
metadata = MetaData()
