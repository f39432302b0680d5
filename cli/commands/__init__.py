"""Command groups registered on the ``fhirgen`` CLI."""
