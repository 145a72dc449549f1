# =============================================================================
# school_core/data/supabase_client.py
# Supabase Client Configuration for the school core
# Handles the database connection and the RemoteDataSource over it
# =============================================================================

from __future__ import annotations
import streamlit as st
from typing import Optional, Dict, Any, List
import logging

from school_core.data.remote import RemoteDataSource, InMemoryRemote
from school_core.errors import RemoteUnavailableError
from school_core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Supabase caps a single select at 1000 rows
PAGE_SIZE = 1000


def get_supabase_client(settings: Optional[Settings] = None):
    """
    Initialize and return a Supabase client from settings.

    Credentials come from `.streamlit/secrets.toml`:
        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"
    or the SUPABASE_URL / SUPABASE_KEY environment variables.

    Returns:
        Supabase client instance or None if not configured
    """
    settings = settings or get_settings()
    if not settings.has_remote:
        logger.info("Supabase credentials not configured; running local-only")
        return None

    from supabase import create_client, Client

    client: Client = create_client(settings.supabase_url, settings.supabase_key)
    return client


@st.cache_resource(ttl=3600)  # Cache for 1 hour, then refresh
def get_cached_supabase_client():
    """
    Get cached Supabase client (reused across sessions).

    Uses TTL to periodically refresh the connection and prevent stale connections.
    """
    return get_supabase_client()


class SupabaseRemote(RemoteDataSource):
    """
    RemoteDataSource backed by a Supabase project.

    Errors from the client propagate unchanged; the sync engine and the
    timetable service translate them into the error taxonomy.
    """

    def __init__(self, client=None):
        self.client = client if client is not None else get_cached_supabase_client()
        if self.client is None:
            raise RemoteUnavailableError("Supabase client is not configured")

    def select(self, collection, filters=None, gte=None, order_by=None):
        """Fetch ALL matching rows (pages past the 1000 row limit)."""
        all_rows: List[Dict[str, Any]] = []
        offset = 0

        while True:
            query = self.client.table(collection).select("*")

            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            for column, bound in (gte or {}).items():
                query = query.gte(column, bound)
            for column in order_by or []:
                query = query.order(column)

            response = query.range(offset, offset + PAGE_SIZE - 1).execute()

            if not response.data:
                break
            all_rows.extend(response.data)
            # If we got fewer than PAGE_SIZE, we've reached the end
            if len(response.data) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        return all_rows

    def insert(self, collection, record):
        response = self.client.table(collection).insert(record).execute()
        return response.data[0] if response.data else dict(record)

    def upsert(self, collection, record):
        response = self.client.table(collection).upsert(record).execute()
        return response.data[0] if response.data else dict(record)

    def update(self, collection, filters, changes):
        query = self.client.table(collection).update(changes)
        for column, value in filters.items():
            query = query.eq(column, value)
        return query.execute().data or []

    def delete(self, collection, filters):
        query = self.client.table(collection).delete()
        for column, value in filters.items():
            query = query.eq(column, value)
        return len(query.execute().data or [])

    def rpc(self, name, params):
        return self.client.rpc(name, params).execute().data


def get_remote(settings: Optional[Settings] = None) -> RemoteDataSource:
    """
    Pick the remote for the current configuration.

    Returns a SupabaseRemote when credentials are configured, otherwise an
    InMemoryRemote so the app keeps working in local-only mode. The app-wide
    settings share the cached client; explicit settings get their own.
    """
    shared = settings is None or settings is get_settings()
    settings = settings or get_settings()
    if settings.has_remote:
        if shared:
            return SupabaseRemote(get_cached_supabase_client())
        return SupabaseRemote(get_supabase_client(settings))
    return InMemoryRemote()
