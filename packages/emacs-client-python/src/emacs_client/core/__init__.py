"""核心公共件：错误分类与输出面。"""
