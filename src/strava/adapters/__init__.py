"""Concrete remote collaborators for the Stride sync subsystem.

Available adapters:
    SupabaseSyncSource     — ``sync-strava-activities`` edge function
    SupabaseActivitySource — activity rows + ``get-activity-details`` enrichment
"""

from src.strava.adapters.supabase import SupabaseActivitySource, SupabaseSyncSource

__all__ = [
    "SupabaseSyncSource",
    "SupabaseActivitySource",
]
