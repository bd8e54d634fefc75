"""Request validators and business rules"""
