"""Infrastructure layer: repositories, best-effort persistence and event messaging"""
