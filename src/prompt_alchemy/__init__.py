"""
Prompt Alchemy - 参考图生成提示词并异步渲染
"""
__version__ = "0.1.0"
