"""Habit forge: habit tracking with levels, XP and streaks, served over MCP."""
