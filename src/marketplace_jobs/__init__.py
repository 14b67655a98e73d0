"""
marketplace_jobs - background job pipeline for the travel-experience marketplace.

Runs the autonomous infrastructure work behind tenant sites:
- domain registration, verification and DNS setup
- SSL provisioning and renewal checks
- curated collection generation for supplier microsites
- queue maintenance (stuck jobs, error patterns, result cleanup)
"""

__version__ = "1.0.0"
