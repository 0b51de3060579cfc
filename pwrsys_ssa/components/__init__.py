"""Device models: generators, grid sources, motors, renewables, network branches"""
