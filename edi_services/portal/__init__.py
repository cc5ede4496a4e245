"""Seller portal: read-only projection of acknowledged orders, scoped per seller."""
