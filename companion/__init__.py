"""
コンパニオンチャットAPI
"""
