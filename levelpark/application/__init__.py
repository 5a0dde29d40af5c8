"""Application layer: ParkingService orchestration, DTOs, commands and reports"""
