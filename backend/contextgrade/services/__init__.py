"""ContextGrade - Services"""
