"""Conversational orchestration engine for personalized donor email instructions."""
