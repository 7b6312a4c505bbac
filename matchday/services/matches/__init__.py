"""Match participation use-cases.

Entry point is matchday.services.matches.service.MatchService; the domain
errors it raises live in matchday.services.matches.errors.
"""
