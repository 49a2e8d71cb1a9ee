"""Relational store layer.

This package declares the store tables and reconciles property records,
rental medians and ingestion runs against PostgreSQL or SQLite.
"""
