"""
Services package for SpendFlow.

Record-level services built on the DocumentStore.
"""
