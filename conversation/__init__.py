"""
Conversation services for the call director bot.

The shared transcript and everything that consumes it: session log and caption
files, the live dashboard feed, director suggestions, fact-checks, claim
extraction, topic tracking and usage counters. Nothing here talks to the voice
platform directly.
"""
