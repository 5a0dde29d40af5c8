"""Domain layer: spots, vehicles, fines, fine policies and the parking lot aggregate"""
