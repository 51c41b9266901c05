# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Extraction worker: turns a raw session log into structured results.

Runs as a short-lived child process, one per session.
"""
