"""Economies consisting of validated product data and simulation draws."""
