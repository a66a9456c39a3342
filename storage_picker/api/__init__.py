"""HTTP API for the storage picker."""
