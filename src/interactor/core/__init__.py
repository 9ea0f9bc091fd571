"""Interactor 核心基础设施（错误分类与共享工具）。"""
