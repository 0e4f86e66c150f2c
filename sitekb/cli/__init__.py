# =============================================================================
# sitekb/cli/__init__.py - Operator CLI
# =============================================================================
#
# Command-line entry points for operators who need to drive SiteKB outside a
# job scheduler or host application:
#
#   ingest   - crawl a tenant's website and rebuild its index
#   query    - run a similarity search against a tenant's index
#   count    - number of live records for a tenant
#   history  - recent ingestion runs for a tenant
#   purge    - delete a tenant's index
#
# All commands use argparse and build their services through
# sitekb.main.build_services, so they honour the same .env / environment
# configuration as every other entry point.
# =============================================================================

"""Operator CLI for SiteKB (``python -m sitekb.cli <command>``)."""
