"""
核心基础设施：配置、数据库、Redis、对象存储
"""
