"""Media ingestion pipeline for the farming assistant.

This package turns long-form channel videos into a searchable transcript
corpus: it schedules per-video jobs, downloads their audio, transcribes it in
size-limited segments and stores the result in the media store.
"""
