"""Overseer ownership-graph ingestion.

Scans a GitHub organisation's repositories, teams, topics and CODEOWNERS
files, and persists them as a property graph in AgensGraph so that
"who owns what" can be answered and visualised.
"""
