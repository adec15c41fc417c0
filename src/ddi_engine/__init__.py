"""Drug-drug interaction matching engine.

This package cross-references a patient's medications against a reference
table of known drug-drug interactions and returns severity-ranked warnings
at prescribing time. It matches drugs by ATC code first and falls back to
fuzzy name similarity, so that a local (e.g. Italian) formulary and an
English interaction database can be bridged.
"""
