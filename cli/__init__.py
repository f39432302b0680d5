"""Command line interface for the FHIR code generator."""
